"""Sending admission review requests to webhooks under test."""

from __future__ import annotations

import copy
import threading
from collections.abc import Mapping
from typing import Any

import requests

_REQUEST_TIMEOUT = 30.0


class AdmissionError(Exception):
    """An admission review request failed or got an unusable answer."""


def _parse_review(response: requests.Response) -> dict[str, Any]:
    try:
        review = response.json()
    except ValueError as exc:
        raise AdmissionError(f"failed to parse the admission review: {exc}") from exc
    if not isinstance(review, dict):
        raise AdmissionError("response is not an admission review")
    return review


def send_admission_review_request(url: str, review: Mapping[str, Any]) -> dict[str, Any]:
    """Post ``review`` to ``url`` and return the admission review it answers with."""
    try:
        response = requests.post(url, json=dict(review), timeout=_REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        raise AdmissionError(str(exc)) from exc
    with response:
        if response.status_code != 200:
            raise AdmissionError(f"Response status code is: {response.status_code}")
        return _parse_review(response)


class AsyncAdmissionRequestSender:
    """Sends one admission review at a time in the background.

    The caller can react to what the webhook does while the request runs and
    collect the answer afterwards.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self._thread: threading.Thread | None = None
        self._response: dict[str, Any] | None = None
        self._error: AdmissionError | None = None

    @property
    def in_progress(self) -> bool:
        return self._thread is not None

    def send_async(self, review: Mapping[str, Any]) -> None:
        """Start sending ``review``; raise if a previous request is not collected yet."""
        if self._thread is not None:
            raise AdmissionError("A previous request is in progress")
        self._response = None
        self._error = None
        thread = threading.Thread(
            target=self._send,
            args=(copy.deepcopy(dict(review)),),
            name="admission-request",
            daemon=True,
        )
        self._thread = thread
        thread.start()

    def _send(self, review: dict[str, Any]) -> None:
        try:
            self._response = send_admission_review_request(self.url, review)
        except AdmissionError as exc:
            self._error = exc

    def wait_and_receive(self) -> dict[str, Any]:
        """Wait for the running request and return its admission review."""
        thread = self._thread
        if thread is None:
            raise AdmissionError("Request was not initiated, cannot read response")
        thread.join()
        self._thread = None
        if self._error is not None:
            raise self._error
        assert self._response is not None
        return self._response
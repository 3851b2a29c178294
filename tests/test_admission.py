import json

import pytest
import responses

from appframework.admission import (
    AdmissionError,
    AsyncAdmissionRequestSender,
    send_admission_review_request,
)

URL = "http://webhook.example.com/validate"

REVIEW = {
    "apiVersion": "admission.k8s.io/v1",
    "kind": "AdmissionReview",
    "request": {"uid": "abc", "operation": "CREATE"},
}

ANSWER = {
    "apiVersion": "admission.k8s.io/v1",
    "kind": "AdmissionReview",
    "response": {"uid": "abc", "allowed": True},
}


def test_send_returns_parsed_review():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL, json=ANSWER, status=200)
        result = send_admission_review_request(URL, REVIEW)
        assert result == ANSWER
        sent = rsps.calls[0].request
        assert json.loads(sent.body) == REVIEW
        assert sent.headers["Content-Type"] == "application/json"


def test_send_rejects_non_200():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL, json=ANSWER, status=500)
        with pytest.raises(AdmissionError, match="Response status code is: "):
            send_admission_review_request(URL, REVIEW)


def test_send_rejects_unparsable_body():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL, body="not json", status=200)
        with pytest.raises(AdmissionError):
            send_admission_review_request(URL, REVIEW)


def test_send_reports_connection_failure():
    with responses.RequestsMock(assert_all_requests_are_fired=False):
        with pytest.raises(AdmissionError):
            send_admission_review_request(URL, REVIEW)


def test_async_round_trip():
    sender = AsyncAdmissionRequestSender(URL)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL, json=ANSWER, status=200)
        sender.send_async(REVIEW)
        assert sender.wait_and_receive() == ANSWER
    assert sender.in_progress is False


def test_async_refuses_second_request_while_running():
    sender = AsyncAdmissionRequestSender(URL)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL, json=ANSWER, status=200)
        sender.send_async(REVIEW)
        with pytest.raises(AdmissionError, match="A previous request is in progress"):
            sender.send_async(REVIEW)
        assert sender.wait_and_receive()["response"]["allowed"] is True


def test_async_wait_without_request():
    with pytest.raises(AdmissionError, match="Request was not initiated"):
        AsyncAdmissionRequestSender(URL).wait_and_receive()


def test_async_error_is_raised_on_wait_and_clears_progress():
    sender = AsyncAdmissionRequestSender(URL)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL, json=ANSWER, status=403)
        sender.send_async(REVIEW)
        with pytest.raises(AdmissionError, match="Response status code is: "):
            sender.wait_and_receive()
    assert sender.in_progress is False
"""
Gateway tests for io_sqs against a stubbed boto3 client.

Covers:
  - Receive: request shape, optional VisibilityTimeout, FIFO attempt id
  - Ack: delete_message, delete_message_batch with per-entry failures
  - Visibility: change_visibility (clamped), change_visibility_batch
  - Retry: throttling retried, credential/permission errors surfaced at once
"""

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import ANY, Stubber

from sqs_consumer import SQSClient
from sqs_consumer.io_sqs import gateway_hostname, get_sqs_client
from sqs_consumer.logging import StructuredLogger

QUEUE_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/orders"
FIFO_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/orders.fifo"

MESSAGES = [
    {"MessageId": "1", "ReceiptHandle": "rh-1", "Body": "one"},
    {"MessageId": "2", "ReceiptHandle": "rh-2", "Body": "two"},
]


# ---------- fixtures ----------

@pytest.fixture
def boto_sqs():
    return boto3.client(
        "sqs",
        region_name="eu-west-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stub(boto_sqs):
    with Stubber(boto_sqs) as stubber:
        yield stubber
        stubber.assert_no_pending_responses()


@pytest.fixture
def gateway(boto_sqs):
    return SQSClient(sqs_client=boto_sqs, max_retries=3, logger=StructuredLogger("io_sqs", level="ERROR"))


@pytest.fixture
def no_sleep(monkeypatch):
    slept = []
    monkeypatch.setattr("sqs_consumer.io_sqs.time.sleep", slept.append)
    return slept


# ---------- receive ----------

def test_receive_messages(stub, gateway):
    stub.add_response(
        "receive_message",
        {"Messages": MESSAGES},
        {
            "QueueUrl": QUEUE_URL,
            "MaxNumberOfMessages": 2,
            "WaitTimeSeconds": 20,
            "AttributeNames": ["ApproximateReceiveCount"],
            "MessageAttributeNames": [],
        },
    )
    messages = gateway.receive_messages(QUEUE_URL, max_messages=2, attribute_names=("ApproximateReceiveCount",))
    assert [m["MessageId"] for m in messages] == ["1", "2"]


def test_receive_with_visibility_timeout(stub, gateway):
    stub.add_response(
        "receive_message",
        {},
        {
            "QueueUrl": QUEUE_URL,
            "MaxNumberOfMessages": 1,
            "WaitTimeSeconds": 0,
            "AttributeNames": [],
            "MessageAttributeNames": ["All"],
            "VisibilityTimeout": 45,
        },
    )
    assert gateway.receive_messages(
        QUEUE_URL, wait_seconds=0, visibility_timeout=45, message_attribute_names=["All"]
    ) == []


def test_receive_fifo_adds_attempt_id(stub, gateway):
    stub.add_response(
        "receive_message",
        {"Messages": MESSAGES[:1]},
        {
            "QueueUrl": FIFO_URL,
            "MaxNumberOfMessages": 1,
            "WaitTimeSeconds": 20,
            "AttributeNames": [],
            "MessageAttributeNames": [],
            "ReceiveRequestAttemptId": ANY,
        },
    )
    assert len(gateway.receive_messages(FIFO_URL)) == 1


# ---------- ack ----------

def test_delete_message(stub, gateway):
    stub.add_response("delete_message", {}, {"QueueUrl": QUEUE_URL, "ReceiptHandle": "rh-1"})
    gateway.delete_message(QUEUE_URL, "rh-1")


def test_delete_message_requires_receipt_handle(gateway):
    with pytest.raises(ValueError):
        gateway.delete_message(QUEUE_URL, "  ")


def test_delete_message_batch(stub, gateway):
    stub.add_response(
        "delete_message_batch",
        {
            "Successful": [{"Id": "1"}],
            "Failed": [{"Id": "2", "SenderFault": True, "Code": "ReceiptHandleIsInvalid", "Message": "expired"}],
        },
        {
            "QueueUrl": QUEUE_URL,
            "Entries": [
                {"Id": "1", "ReceiptHandle": "rh-1"},
                {"Id": "2", "ReceiptHandle": "rh-2"},
            ],
        },
    )
    failed = gateway.delete_message_batch(QUEUE_URL, MESSAGES)
    assert [f["Id"] for f in failed] == ["2"]


@pytest.mark.parametrize("messages", [[], [MESSAGES[0]] * 11])
def test_batch_size_checked(gateway, messages):
    with pytest.raises(ValueError):
        gateway.delete_message_batch(QUEUE_URL, messages)


# ---------- visibility ----------

def test_change_visibility(stub, gateway):
    stub.add_response(
        "change_message_visibility",
        {},
        {"QueueUrl": QUEUE_URL, "ReceiptHandle": "rh-1", "VisibilityTimeout": 0},
    )
    gateway.change_visibility(QUEUE_URL, "rh-1", 0)


def test_change_visibility_clamped_to_sqs_max(stub, gateway):
    stub.add_response(
        "change_message_visibility",
        {},
        {"QueueUrl": QUEUE_URL, "ReceiptHandle": "rh-1", "VisibilityTimeout": 43_200},
    )
    gateway.change_visibility(QUEUE_URL, "rh-1", 90_000)


def test_change_visibility_rejects_negative(gateway):
    with pytest.raises(ValueError):
        gateway.change_visibility(QUEUE_URL, "rh-1", -1)


def test_change_visibility_batch(stub, gateway):
    stub.add_response(
        "change_message_visibility_batch",
        {"Successful": [{"Id": "1"}, {"Id": "2"}], "Failed": []},
        {
            "QueueUrl": QUEUE_URL,
            "Entries": [
                {"Id": "1", "ReceiptHandle": "rh-1", "VisibilityTimeout": 30},
                {"Id": "2", "ReceiptHandle": "rh-2", "VisibilityTimeout": 30},
            ],
        },
    )
    assert gateway.change_visibility_batch(QUEUE_URL, MESSAGES, 30) == []


# ---------- retry ----------

def test_throttling_is_retried(stub, gateway, no_sleep):
    stub.add_client_error("delete_message", service_error_code="ThrottlingException",
                          service_message="Rate exceeded", http_status_code=400)
    stub.add_response("delete_message", {}, {"QueueUrl": QUEUE_URL, "ReceiptHandle": "rh-1"})

    gateway.delete_message(QUEUE_URL, "rh-1")
    assert len(no_sleep) == 1


def test_retries_give_up_after_max_retries(stub, gateway, no_sleep):
    for _ in range(3):
        stub.add_client_error("receive_message", service_error_code="ServiceUnavailable", http_status_code=503)

    with pytest.raises(ClientError):
        gateway.receive_messages(QUEUE_URL)
    assert len(no_sleep) == 2


def test_permission_error_not_retried(stub, gateway, no_sleep):
    stub.add_client_error("receive_message", service_error_code="AccessDenied",
                          service_message="Forbidden", http_status_code=403)

    with pytest.raises(ClientError) as exc:
        gateway.receive_messages(QUEUE_URL)
    assert exc.value.response["ResponseMetadata"]["HTTPStatusCode"] == 403
    assert no_sleep == []


# ---------- hostname ----------

def test_hostname(gateway):
    assert gateway.hostname == "sqs.eu-west-1.amazonaws.com"
    assert gateway_hostname(gateway) == "sqs.eu-west-1.amazonaws.com"


def test_hostname_of_plain_gateway():
    assert gateway_hostname(object()) is None


def test_boto_client_does_not_retry_on_its_own():
    client = get_sqs_client("eu-west-1")
    assert client.meta.config.retries["total_max_attempts"] == 1
    assert client.meta.config.read_timeout > 20

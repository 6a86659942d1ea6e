import json
from unittest.mock import Mock, patch

from payapi.services.aws_service import AwsService
from payapi.services.notification_service import NotificationService, PaymentEventType


def test_skips_when_queue_not_configured(settings):
    aws = Mock()
    service = NotificationService(aws, settings.model_copy(update={"SQS_PAYMENT_EVENTS_QUEUE_URL": None}))

    service.notify(PaymentEventType.PAYMENT_COMPLETED, {"audit_log_id": 1})

    aws.send_sqs_message.assert_not_called()


def test_publishes_event_body(settings):
    aws = Mock()
    queue_url = "https://sqs.ap-northeast-2.amazonaws.com/000000000000/payment-events"
    service = NotificationService(
        aws, settings.model_copy(update={"SQS_PAYMENT_EVENTS_QUEUE_URL": queue_url})
    )

    service.notify(PaymentEventType.RECOVERY_REQUIRED, {"audit_log_id": 7})

    sent_url, body = aws.send_sqs_message.call_args[0]
    assert sent_url == queue_url
    message = json.loads(body)
    assert message["event_type"] == "payment.recovery_required"
    assert message["audit_log_id"] == 7
    assert "occurred_at" in message

    kwargs = aws.send_sqs_message.call_args.kwargs
    assert kwargs["attributes"] == {"event_type": "payment.recovery_required"}
    assert kwargs["deduplication_id"] == "payment.recovery_required:audit_log_id:7"
    assert kwargs["group_id"] == "payments"


def test_send_failure_does_not_propagate(settings):
    """알림 실패는 결제 흐름에 영향 없음"""
    aws = Mock()
    aws.send_sqs_message.side_effect = RuntimeError("sqs down")
    service = NotificationService(
        aws, settings.model_copy(update={"SQS_PAYMENT_EVENTS_QUEUE_URL": "https://sqs.test/q"})
    )

    service.notify(PaymentEventType.PAYMENT_COMPLETED, {"audit_log_id": 1})


@patch("payapi.services.aws_service.boto3.client")
def test_fifo_queue_params(mock_client, settings):
    sqs = mock_client.return_value
    service = AwsService(settings)

    service.send_sqs_message(
        "https://sqs.test/payment-events.fifo",
        "{}",
        attributes={"event_type": "payment.completed"},
        group_id="user-1",
        deduplication_id="payment.completed:audit_log_id:1",
    )

    params = sqs.send_message.call_args.kwargs
    assert params["MessageGroupId"] == "user-1"
    assert params["MessageDeduplicationId"] == "payment.completed:audit_log_id:1"
    assert params["MessageAttributes"]["event_type"] == {
        "DataType": "String",
        "StringValue": "payment.completed",
    }


@patch("payapi.services.aws_service.boto3.client")
def test_standard_queue_has_no_fifo_params(mock_client, settings):
    sqs = mock_client.return_value
    AwsService(settings).send_sqs_message("https://sqs.test/payment-events", "{}")

    params = sqs.send_message.call_args.kwargs
    assert "MessageGroupId" not in params
    assert "MessageAttributes" not in params

import logging
from typing import Any, Dict, Optional

import boto3
from fastapi import HTTPException

from payapi.config import Settings

logger = logging.getLogger(__name__)


class AwsService:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.aws_access_key_id = settings.AWS_SQS_ACCESS_KEY_ID
        self.aws_secret_access_key = settings.AWS_SQS_SECRET_ACCESS_KEY
        self.region_name = settings.AWS_REGION

    def _client(self, service: str):
        if self.aws_access_key_id and self.aws_secret_access_key:
            return boto3.client(
                service,
                region_name=self.region_name,
                aws_access_key_id=self.aws_access_key_id,
                aws_secret_access_key=self.aws_secret_access_key,
            )

        return boto3.client(service, region_name=self.region_name)

    def send_sqs_message(
        self,
        queue_url: str,
        message_body: str,
        attributes: Optional[Dict[str, str]] = None,
        group_id: Optional[str] = None,
        deduplication_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        SQS 메시지 전송

        FIFO 큐(.fifo)는 group_id 가 필수이며, deduplication_id 가 같으면
        5분 안의 재전송은 SQS 가 한 번만 전달합니다.
        """
        sqs = self._client("sqs")
        params: Dict[str, Any] = {"QueueUrl": queue_url, "MessageBody": message_body}
        if attributes:
            params["MessageAttributes"] = {
                name: {"DataType": "String", "StringValue": value}
                for name, value in attributes.items()
            }
        if queue_url.endswith(".fifo"):
            params["MessageGroupId"] = group_id or "payments"
            if deduplication_id:
                params["MessageDeduplicationId"] = deduplication_id

        try:
            return sqs.send_message(**params)
        except sqs.exceptions.QueueDoesNotExist:
            raise HTTPException(
                status_code=404, detail=f"SQS queue not found: {queue_url}"
            )
        except Exception as e:
            raise HTTPException(
                status_code=500, detail=f"Error sending message to SQS: {str(e)}"
            )

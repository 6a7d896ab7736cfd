"""SNS notifier: publishes matched findings for human review."""

import json
import logging
from typing import Any, Dict, Optional, Union

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

# SNS rejects subjects longer than 100 characters
MAX_SUBJECT_LENGTH = 100


def build_subject(event: Dict[str, Any]) -> str:
    detail = event.get("detail") or {}
    subject = f"GuardDuty finding: {detail.get('type', 'unknown')}"
    return subject[:MAX_SUBJECT_LENGTH]


class SnsNotifier:
    """Publishes the raw finding event to a topic with email subscriptions.

    Notification never gates remediation: a failed publish is logged and
    reported by returning False.
    """

    def __init__(self, sns_client, topic_arn: str):
        self.client = sns_client
        self.topic_arn = topic_arn

    def publish(self, event: Dict[str, Any]) -> Union[Optional[str], bool]:
        """Publish ``event``. Returns the message id, or False on failure."""
        try:
            response = self.client.publish(
                TopicArn=self.topic_arn,
                Subject=build_subject(event),
                Message=json.dumps(event, default=str),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to publish finding to {self.topic_arn}: {str(e)}")
            return False
        message_id = response.get("MessageId")
        logger.info(f"Published finding to {self.topic_arn} as message {message_id}")
        return message_id

    __call__ = publish

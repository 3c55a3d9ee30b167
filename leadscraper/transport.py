"""
Queue transport between the submission API and the extraction workers.
- At-least-once: a message stays until acked; unacked messages reappear
  after the visibility timeout
- SqsQueue is the production backend (boto3); DatabaseQueue leases rows in
  queue_messages for single-box deployments and tests
- Poison messages go to a dead-letter channel instead of cycling forever
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from leadscraper.errors import EnqueueError, WorkerError
from leadscraper.models import QueuedMessage, ScrapeMessage, utcnow
from leadscraper.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class Delivery:
    message_id: str
    receipt: str
    body: str
    receive_count: int = 1


class QueueTransport(ABC):
    max_receive_count: int = 3

    @abstractmethod
    def enqueue(self, message: ScrapeMessage) -> str:
        """Send a message; returns the transport's message id. Raises EnqueueError."""

    @abstractmethod
    def receive(self, max_messages: int = 1) -> List[Delivery]:
        ...

    @abstractmethod
    def ack(self, delivery: Delivery) -> None:
        ...

    @abstractmethod
    def dead_letter(self, delivery: Delivery, reason: str) -> None:
        ...


def _aws_error(e: Exception) -> str:
    if isinstance(e, ClientError):
        err = e.response.get("Error", {})
        return f"{err.get('Code')} {err.get('Message')}"
    return str(e)


# ----- SQS -----

class SqsQueue(QueueTransport):
    def __init__(
        self,
        queue_url: Optional[str],
        dlq_url: Optional[str] = None,
        *,
        region: str = "us-east-1",
        visibility_timeout: int = 120,
        wait_time: int = 10,
        max_receive_count: int = 3,
        client=None,
    ):
        self.queue_url = queue_url
        self.dlq_url = dlq_url
        self.visibility_timeout = visibility_timeout
        self.wait_time = wait_time
        self.max_receive_count = max_receive_count
        cfg = Config(region_name=region, retries={"max_attempts": 3, "mode": "standard"})
        self.client = client or boto3.client("sqs", region_name=region, config=cfg)

    def enqueue(self, message: ScrapeMessage) -> str:
        if not self.queue_url:
            raise EnqueueError("LEAD_SCRAPE_QUEUE_URL not configured")
        try:
            resp = self.client.send_message(QueueUrl=self.queue_url, MessageBody=message.to_body())
        except (ClientError, BotoCoreError) as e:
            raise EnqueueError(f"SQS send error: {_aws_error(e)}") from e
        logger.info("Enqueued job %s as SQS message %s", message.job_id, resp.get("MessageId"))
        return resp["MessageId"]

    def receive(self, max_messages: int = 1) -> List[Delivery]:
        if not self.queue_url:
            raise WorkerError("LEAD_SCRAPE_QUEUE_URL not configured")
        try:
            resp = self.client.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=max(1, min(10, max_messages)),
                WaitTimeSeconds=self.wait_time,
                VisibilityTimeout=self.visibility_timeout,
                AttributeNames=["ApproximateReceiveCount"],
            )
        except (ClientError, BotoCoreError) as e:
            raise WorkerError(f"SQS receive error: {_aws_error(e)}") from e

        out: List[Delivery] = []
        for m in resp.get("Messages", []) or []:
            count = int((m.get("Attributes") or {}).get("ApproximateReceiveCount", 1))
            out.append(Delivery(
                message_id=m["MessageId"],
                receipt=m["ReceiptHandle"],
                body=m.get("Body", ""),
                receive_count=count,
            ))
        return out

    def ack(self, delivery: Delivery) -> None:
        try:
            self.client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=delivery.receipt)
        except (ClientError, BotoCoreError) as e:
            raise WorkerError(f"SQS delete error: {_aws_error(e)}") from e

    def dead_letter(self, delivery: Delivery, reason: str) -> None:
        if not self.dlq_url:
            # leave it unacked; the queue's redrive policy moves it after maxReceiveCount
            logger.error("No DLQ configured; message %s left for redrive (%s)", delivery.message_id, reason)
            return
        try:
            self.client.send_message(
                QueueUrl=self.dlq_url,
                MessageBody=delivery.body,
                MessageAttributes={"reason": {"DataType": "String", "StringValue": reason[:256] or "unknown"}},
            )
        except (ClientError, BotoCoreError) as e:
            raise WorkerError(f"SQS dead-letter error: {_aws_error(e)}") from e
        self.ack(delivery)
        logger.error("Dead-lettered message %s: %s", delivery.message_id, reason)


# ----- Database -----

class DatabaseQueue(QueueTransport):
    def __init__(
        self,
        engine,
        name: str = "lead-scrape-jobs",
        *,
        visibility_timeout: int = 120,
        max_receive_count: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.name = name
        self.dlq_name = f"{name}-dlq"
        self.visibility_timeout = visibility_timeout
        self.max_receive_count = max_receive_count
        self._clock = clock

    def enqueue(self, message: ScrapeMessage) -> str:
        now = self._clock()
        row = QueuedMessage(queue=self.name, body=message.to_body(), visible_at=now, created_at=now)
        try:
            with Session(self.engine) as s:
                s.add(row)
                s.commit()
                s.refresh(row)
        except SQLAlchemyError as e:
            raise EnqueueError(f"queue write error: {e}") from e
        logger.info("Enqueued job %s as message %s", message.job_id, row.message_id)
        return row.message_id

    def receive(self, max_messages: int = 1) -> List[Delivery]:
        """Lease up to `max_messages` visible messages, oldest first.

        Candidates are read first, then each one is claimed with an UPDATE
        conditioned on the receipt it had when read. A row another consumer
        claimed in between updates zero rows and is skipped.
        """
        now = self._clock()
        lease_until = now + timedelta(seconds=self.visibility_timeout)
        out: List[Delivery] = []
        try:
            with Session(self.engine) as s:
                stmt = (
                    select(QueuedMessage)
                    .where(QueuedMessage.queue == self.name)
                    .where(QueuedMessage.visible_at <= now)
                    .order_by(QueuedMessage.created_at)
                    .limit(max_messages)
                )
                candidates = s.exec(stmt).all()
            for row in candidates:
                delivery = self._claim(row, now, lease_until)
                if delivery is not None:
                    out.append(delivery)
        except SQLAlchemyError as e:
            raise WorkerError(f"queue read error: {e}") from e
        return out

    def _claim(self, row: QueuedMessage, now: datetime, lease_until: datetime) -> Optional[Delivery]:
        receipt = uuid.uuid4().hex
        seen_receipt = (
            QueuedMessage.receipt.is_(None) if row.receipt is None else QueuedMessage.receipt == row.receipt
        )
        stmt = (
            update(QueuedMessage)
            .where(QueuedMessage.message_id == row.message_id)
            .where(QueuedMessage.queue == self.name)
            .where(QueuedMessage.visible_at <= now)
            .where(seen_receipt)
            .values(receive_count=QueuedMessage.receive_count + 1, receipt=receipt, visible_at=lease_until)
        )
        with self.engine.begin() as conn:
            claimed = conn.execute(stmt).rowcount
        if claimed != 1:
            logger.info("Message %s was leased by another consumer", row.message_id)
            return None
        return Delivery(
            message_id=row.message_id,
            receipt=receipt,
            body=row.body,
            receive_count=row.receive_count + 1,
        )

    def ack(self, delivery: Delivery) -> None:
        # a stale receipt (lease expired and re-leased) must not delete the new lease
        try:
            with Session(self.engine) as s:
                row = s.get(QueuedMessage, delivery.message_id)
                if row is None or row.receipt != delivery.receipt:
                    logger.warning("Stale ack for message %s ignored", delivery.message_id)
                    return
                s.delete(row)
                s.commit()
        except SQLAlchemyError as e:
            raise WorkerError(f"queue ack error: {e}") from e

    def dead_letter(self, delivery: Delivery, reason: str) -> None:
        try:
            with Session(self.engine) as s:
                row = s.get(QueuedMessage, delivery.message_id)
                if row is None:
                    return
                row.queue = self.dlq_name
                row.dead_letter_reason = reason
                row.receipt = None
                s.add(row)
                s.commit()
        except SQLAlchemyError as e:
            raise WorkerError(f"queue dead-letter error: {e}") from e
        logger.error("Dead-lettered message %s: %s", delivery.message_id, reason)

    def dead_letters(self) -> List[QueuedMessage]:
        with Session(self.engine) as s:
            stmt = select(QueuedMessage).where(QueuedMessage.queue == self.dlq_name).order_by(QueuedMessage.created_at)
            return list(s.exec(stmt).all())

    def pending(self) -> int:
        with Session(self.engine) as s:
            return len(s.exec(select(QueuedMessage.message_id).where(QueuedMessage.queue == self.name)).all())


def build_queue(settings: Settings, engine=None) -> QueueTransport:
    backend = (settings.QUEUE_BACKEND or "").lower()
    if backend == "sqs":
        return SqsQueue(
            settings.LEAD_SCRAPE_QUEUE_URL,
            settings.LEAD_SCRAPE_DLQ_URL,
            region=settings.AWS_REGION,
            visibility_timeout=settings.VISIBILITY_TIMEOUT_S,
            wait_time=settings.WAIT_TIME_S,
            max_receive_count=settings.MAX_RECEIVE_COUNT,
        )
    if backend == "db":
        if engine is None:
            raise EnqueueError("database queue backend needs an engine")
        return DatabaseQueue(
            engine,
            settings.QUEUE_NAME,
            visibility_timeout=settings.VISIBILITY_TIMEOUT_S,
            max_receive_count=settings.MAX_RECEIVE_COUNT,
        )
    raise EnqueueError(f"unknown QUEUE_BACKEND {settings.QUEUE_BACKEND!r}")

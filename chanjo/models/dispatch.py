from pydantic import BaseModel

from chanjo.models.reminder import CadenceEnum


class NotificationModel(BaseModel, frozen=True):
    body: str
    subject: str

    def as_text(self) -> str:
        """
        Flatten the notification for text channels (e.g. SMS).
        """
        return f"{self.subject}\n\n{self.body}"


class DispatchReportModel(BaseModel):
    cadence: CadenceEnum
    recipients_failed: int = 0
    recipients_processed: int = 0
    recipients_skipped: int = 0
    reminders_sent: int = 0

    @property
    def partial_failure(self) -> bool:
        return self.recipients_failed > 0 or self.recipients_skipped > 0


class MaterializeReportModel(BaseModel):
    baby_id: str
    reminders_deleted: int = 0
    reminders_written: int = 0

from pydantic import BaseModel


class ScheduleEntryModel(BaseModel, frozen=True):
    age: str
    """Offset from birth, in a human readable form (e.g. "birth", "6 weeks", "2-4 months")."""
    vaccine: str

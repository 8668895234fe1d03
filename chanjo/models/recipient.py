from pydantic import BaseModel

from chanjo.helpers.pydantic_types.phone_numbers import PhoneNumber


class RecipientUserModel(BaseModel):
    email: str | None = None


class RecipientModel(BaseModel):
    """
    Guardian of a baby, who receives the reminders.

    Read-only, owned by the profile service. Contact fields are all optional as profiles are filled progressively.
    """

    full_name: str | None = None
    phone_number: PhoneNumber | None = None
    recipient_id: str
    user: RecipientUserModel | None = None

    def contact(self) -> PhoneNumber | None:
        """
        Address to send notifications to, if any.
        """
        return self.phone_number

    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        if self.user and self.user.email:
            return self.user.email
        return "parent"

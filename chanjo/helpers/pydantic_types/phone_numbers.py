from pydantic_extra_types.phone_numbers import PhoneNumber as PydanticPhoneNumber


class PhoneNumber(PydanticPhoneNumber):
    """
    Phone number of a recipient, or of the SMS sender.

    Stored and sent in E164, which every SMS provider accepts.
    """

    phone_format = "E164"

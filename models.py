from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_PHONE_NUMBER = "0790652803"
DEFAULT_ACCOUNT_REFERENCE = "Tito's Foundation Donation"
DEFAULT_TRANSACTION_DESC = "Donation to Tito's Foundation"


# Models
class PaymentRequest(BaseModel):
    amount: float = Field(..., gt=0, strict=True, description="Payment amount must be a positive number")
    phone_number: str = Field(
        default=DEFAULT_PHONE_NUMBER,
        alias="phoneNumber",
        min_length=1,
        description="Local (07...) or country-code (2547...) phone number",
    )
    account_reference: Optional[str] = Field(None, alias="accountReference")
    transaction_desc: Optional[str] = Field(None, alias="transactionDesc")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "amount": 1,
                "phoneNumber": "0790652803",
                "accountReference": "Test Payment",
                "transactionDesc": "Test Payment to 0790652803",
            }
        },
    )


class PushAcknowledgment(BaseModel):
    """Provider response to an accepted STK push."""

    merchant_request_id: Optional[str] = Field(None, alias="MerchantRequestID")
    checkout_request_id: Optional[str] = Field(None, alias="CheckoutRequestID")
    response_code: Optional[str] = Field(None, alias="ResponseCode")
    response_description: Optional[str] = Field(None, alias="ResponseDescription")
    customer_message: Optional[str] = Field(None, alias="CustomerMessage")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class CallbackItem(BaseModel):
    name: str = Field(..., alias="Name")
    value: Any = Field(None, alias="Value")


class CallbackMetadata(BaseModel):
    items: List[CallbackItem] = Field(default_factory=list, alias="Item")


class StkCallback(BaseModel):
    merchant_request_id: Optional[str] = Field(None, alias="MerchantRequestID")
    checkout_request_id: Optional[str] = Field(None, alias="CheckoutRequestID")
    result_code: int = Field(..., alias="ResultCode")
    result_desc: str = Field("", alias="ResultDesc")
    callback_metadata: Optional[CallbackMetadata] = Field(None, alias="CallbackMetadata")

    def metadata_dict(self) -> dict:
        """Flatten CallbackMetadata.Item into {Name: Value}."""
        if self.callback_metadata is None:
            return {}
        return {item.name: item.value for item in self.callback_metadata.items}


class CallbackBody(BaseModel):
    stk_callback: StkCallback = Field(..., alias="stkCallback")


class CallbackPayload(BaseModel):
    body: CallbackBody = Field(..., alias="Body")


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Callback received successfully"

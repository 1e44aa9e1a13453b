from marshmallow import EXCLUDE, fields, validate

from marketplace import ma
from marketplace.models.commission import CommissionStatus, PayoutStatus
from marketplace.models.order import OrderStatus
from marketplace.models.user import PayoutFrequency, PayoutMethod


class RequestSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE


# ----- Requests -----

class LoginSchema(RequestSchema):
    email = fields.Email(required=True)
    password = fields.String(required=True, validate=validate.Length(min=1))


class OrderItemSchema(RequestSchema):
    product_id = fields.String(required=True)
    quantity = fields.Integer(required=True, strict=True, validate=validate.Range(min=1))


class OrderCreateSchema(RequestSchema):
    vendor_id = fields.String(required=True)
    customer_id = fields.String()
    items = fields.List(fields.Nested(OrderItemSchema), required=True, validate=validate.Length(min=1))
    notes = fields.String(allow_none=True)


class StatusChangeSchema(RequestSchema):
    status = fields.String(required=True)


class OrderStatusSchema(StatusChangeSchema):
    status = fields.String(required=True, validate=validate.OneOf(list(OrderStatus.TRANSITIONS)))


class CommissionStatusSchema(StatusChangeSchema):
    status = fields.String(required=True, validate=validate.OneOf(list(CommissionStatus.TRANSITIONS)))


class PayoutRequestSchema(RequestSchema):
    vendor_id = fields.String()
    amount = fields.Decimal(required=True, places=2)
    notes = fields.String(allow_none=True)


class PayoutUpdateSchema(RequestSchema):
    status = fields.String(validate=validate.OneOf(list(PayoutStatus.TRANSITIONS)))
    notes = fields.String(allow_none=True)


class PayoutSettingsSchema(RequestSchema):
    minimum_payout = fields.Decimal(places=2, validate=validate.Range(min=10, max=10000))
    payout_frequency = fields.String(validate=validate.OneOf(PayoutFrequency.ALL))
    payout_method = fields.String(validate=validate.OneOf(PayoutMethod.ALL))
    is_active = fields.Boolean()


class TrialSignupSchema(RequestSchema):
    plan_id = fields.String(required=True)
    phone_number = fields.String(allow_none=True)
    payment_card_last4 = fields.String(allow_none=True, validate=validate.Regexp(r'^\d{4}$'))
    stripe_customer_id = fields.String(allow_none=True)


class PeriodSchema(RequestSchema):
    start = fields.DateTime()
    end = fields.DateTime()
    vendor_id = fields.String()


# ----- Responses -----

class CommissionSchema(ma.Schema):
    id = fields.String()
    order_id = fields.String()
    vendor_id = fields.String()
    payout_id = fields.String(allow_none=True)
    amount = fields.Float()
    rate = fields.Float()
    status = fields.String()
    breakdown = fields.Dict()
    calculated_at = fields.DateTime(allow_none=True)
    paid_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime()


class PayoutSchema(ma.Schema):
    id = fields.String()
    vendor_id = fields.String()
    amount = fields.Float()
    status = fields.String()
    scheduled_date = fields.DateTime()
    processed_at = fields.DateTime(allow_none=True)
    failure_reason = fields.String(allow_none=True)
    payment_reference = fields.String(allow_none=True)
    retry_count = fields.Integer()
    notes = fields.String(allow_none=True)
    payout_metadata = fields.Dict(data_key='metadata')
    commission_ids = fields.Method('get_commission_ids')
    created_at = fields.DateTime()

    def get_commission_ids(self, payout):
        return [c.id for c in payout.commissions]


class PayoutSettingsOutSchema(ma.Schema):
    vendor_id = fields.String()
    minimum_payout = fields.Float()
    payout_frequency = fields.String()
    payout_method = fields.String()
    is_active = fields.Boolean()
    last_payout_date = fields.DateTime(allow_none=True)
    next_payout_date = fields.DateTime(allow_none=True)


class OrderItemOutSchema(ma.Schema):
    product_id = fields.String()
    quantity = fields.Integer()
    price = fields.Float()


class OrderSchema(ma.Schema):
    id = fields.String()
    order_number = fields.String()
    vendor_id = fields.String()
    customer_id = fields.String()
    status = fields.String()
    total_price = fields.Float()
    notes = fields.String(allow_none=True)
    items = fields.List(fields.Nested(OrderItemOutSchema))
    commission = fields.Nested(CommissionSchema, allow_none=True)
    created_at = fields.DateTime()


class SubscriptionSchema(ma.Schema):
    id = fields.String()
    vendor_id = fields.String()
    plan_id = fields.String()
    tier = fields.String()
    status = fields.String()
    price = fields.Float()
    billing_cycle = fields.String()
    start_date = fields.DateTime()
    end_date = fields.DateTime(allow_none=True)
    trial_end_date = fields.DateTime(allow_none=True)


class TrialUsageSchema(ma.Schema):
    id = fields.String()
    user_id = fields.String()
    plan_id = fields.String()
    email = fields.String()
    ip_address = fields.String()
    trial_start_date = fields.DateTime()
    trial_end_date = fields.DateTime()
    fraud_score = fields.Integer()
    is_fraudulent = fields.Boolean()
    status = fields.String()
    notes = fields.String(allow_none=True)
    created_at = fields.DateTime()


commission_schema = CommissionSchema()
commissions_schema = CommissionSchema(many=True)
payout_schema = PayoutSchema()
payouts_schema = PayoutSchema(many=True)
payout_settings_schema = PayoutSettingsOutSchema()
order_schema = OrderSchema()
subscription_schema = SubscriptionSchema()
trial_schema = TrialUsageSchema()
trials_schema = TrialUsageSchema(many=True)

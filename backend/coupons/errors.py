"""
Coupon error kinds.

Every failure of the coupon subsystem is user-facing: services raise
CouponError and views turn it into a structured JSON response.
"""


class CouponError(Exception):
    NOT_FOUND = 'NOT_FOUND'
    INACTIVE = 'INACTIVE'
    EXPIRED = 'EXPIRED'
    PLAN_NOT_ELIGIBLE = 'PLAN_NOT_ELIGIBLE'
    LIMIT_REACHED = 'LIMIT_REACHED'
    ALREADY_USED = 'ALREADY_USED'
    HAS_USAGE = 'HAS_USAGE'
    VALIDATION = 'VALIDATION'

    MESSAGES = {
        NOT_FOUND: 'Coupon not found',
        INACTIVE: 'Coupon is inactive',
        EXPIRED: 'Coupon has expired',
        PLAN_NOT_ELIGIBLE: 'Coupon is not applicable to this plan',
        LIMIT_REACHED: 'Coupon usage limit reached',
        ALREADY_USED: 'You have already used this coupon',
        HAS_USAGE: 'Cannot delete coupon that has been used. Deactivate it instead.',
        VALIDATION: 'Invalid coupon data',
    }

    HTTP_STATUS = {
        NOT_FOUND: 404,
        LIMIT_REACHED: 409,
        ALREADY_USED: 409,
        HAS_USAGE: 409,
    }

    def __init__(self, code, message=None, details=None):
        if code not in self.MESSAGES:
            raise ValueError(f"Unknown coupon error code: {code}")
        self.code = code
        self.message = message or self.MESSAGES[code]
        self.details = details
        super().__init__(self.message)

    @property
    def http_status(self):
        return self.HTTP_STATUS.get(self.code, 400)

    def as_dict(self):
        data = {'error': self.message, 'code': self.code}
        if self.details:
            data['details'] = self.details
        return data

    def __repr__(self):
        return f"CouponError({self.code!r}, {self.message!r})"

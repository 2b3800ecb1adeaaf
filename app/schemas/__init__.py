# app/schemas/__init__.py
from .outcomes import (
    Ok,
    Conflict,
    ValidationFailed,
    NotFound,
    UpstreamUnavailable,
    Outcome
)

from .availability import (
    AppointmentTypeSummary,
    AvailableDatesResponse,
    SlotResponse,
    AvailableSlotsResponse,
    PrewarmRequest,
    PrewarmResponse,
    AvailabilityRuleInput,
    AvailabilityRulesUpdate,
    AvailabilityRuleResponse,
    DateOverrideInput,
    DateOverrideResponse,
    AppointmentTypeUpdate
)

from .booking import (
    VisitorInfo,
    BookingRequest,
    AppointmentResponse,
    BookingResponse,
    AppointmentUpdate,
    CancelByTokenRequest,
    CancelResponse
)

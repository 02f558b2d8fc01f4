from app.auth.models import RefreshToken, User  # noqa: F401
from app.cycles.models import Cycle, Enrollment, Program  # noqa: F401
from app.leads.models import Deal, Lead, LeadActivity  # noqa: F401

# Import every model so Base.metadata is complete (Alembic, tests).
from vilo.models.user import User  # noqa: F401
from vilo.models.property import Property, PropertyTeamMember  # noqa: F401
from vilo.models.booking import Booking  # noqa: F401
from vilo.models.payment import Payment  # noqa: F401
from vilo.models.refund import RefundRequest, RefundStatusHistory, RefundComment, RefundDocument  # noqa: F401
from vilo.models.credit_memo import CreditMemo  # noqa: F401
from vilo.models.audit_log import AuditLog  # noqa: F401
from vilo.models.email_log import EmailLog  # noqa: F401
from vilo.models.email_template import EmailTemplate  # noqa: F401
from vilo.models.notification import Notification  # noqa: F401
from vilo.models.setting import Setting  # noqa: F401

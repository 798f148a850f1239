"""TextBuilder Data Models"""

from .account import (
    Account,
    AccountStatus,
    ApiKey,
    DEFAULT_NOTIFICATION_SETTINGS,
)
from .credits import (
    CreditTransaction,
    CreditTransactionType,
    CreditFeature,
    CreditHold,
    CreditHoldDirection,
    CreditHoldStatus,
)
from .plans import (
    PlanDetails,
    SubscriptionPlan,
    SubscriptionPlanType,
    CreditPackage,
    PLANS,
    CREDIT_PACKAGES,
    POPULAR_PLAN_ID,
)
from .articles import (
    Article,
    ArticleConfig,
    ArticleStatus,
)
from .jobs import (
    GenerationJob,
    GenerationJobStatus,
    GenerationJobType,
)

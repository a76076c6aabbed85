"""
Liyaqa - Data Models
"""
from liyaqa.models.platform import (
    DBTenant, TenantStatus,
    DBTenantApiKey, ApiKeyStatus,
    DBImpersonationSession, ImpersonationStatus,
    DBTeamInvite, InviteStatus,
)
from liyaqa.models.users import DBUser, UserRole, Permission, ROLE_PERMISSIONS
from liyaqa.models.organization import (
    DBOrganization, DBClub, DBLocation, DBGenderSchedule,
    OrganizationStatus, OrganizationType, GenderPolicy, Gender, DAYS_OF_WEEK,
)
from liyaqa.models.membership import (
    DBMember, DBMembershipPlan, DBSubscription, MemberStatus, SubscriptionStatus,
)
from liyaqa.models.billing import DBInvoice, DBInvoiceLineItem, InvoiceStatus, ZatcaStatus
from liyaqa.models.marketing import (
    DBCampaign, DBCampaignStep, DBCampaignEnrollment, DBMessageLog, DBTrackingPixel,
    DBSegment, DBSegmentMember,
    CampaignStatus, CampaignType, TriggerType, StepChannel, EnrollmentStatus,
    MessageStatus, SegmentType,
)
from liyaqa.models.shop import (
    DBProductCategory, DBProduct, DBBundleItem, DBOrder, DBOrderItem,
    DBMemberPurchase, DBMemberZoneAccess,
    ProductType, ProductStatus, Department, OrderStatus,
)
from liyaqa.models.audit import DBAuditLog, DBNotification

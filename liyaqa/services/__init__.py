"""
Liyaqa - Services
Business logic, notification channels and external integrations
"""
from liyaqa.services.audit_service import AuditService, audit_service
from liyaqa.services.auth_service import AuthService, auth_service
from liyaqa.services.tenant_service import TenantService, tenant_service
from liyaqa.services.api_key_service import ApiKeyService, api_key_service
from liyaqa.services.impersonation_service import ImpersonationService, impersonation_service
from liyaqa.services.team_service import TeamService, team_service
from liyaqa.services.organization_service import OrganizationService, organization_service
from liyaqa.services.gender_policy_service import GenderPolicyService, gender_policy_service
from liyaqa.services.membership_service import MembershipService, membership_service
from liyaqa.services.zatca_service import ZatcaService, zatca_service
from liyaqa.services.invoice_service import InvoiceService, invoice_service
from liyaqa.services.product_service import ProductService, product_service
from liyaqa.services.order_service import OrderService, order_service
from liyaqa.services.platform_analytics_service import PlatformAnalyticsService, platform_analytics_service
from liyaqa.services.notification_service import NotificationService, notification_service

__all__ = [
    'AuditService', 'audit_service',
    'AuthService', 'auth_service',
    'TenantService', 'tenant_service',
    'ApiKeyService', 'api_key_service',
    'ImpersonationService', 'impersonation_service',
    'TeamService', 'team_service',
    'OrganizationService', 'organization_service',
    'GenderPolicyService', 'gender_policy_service',
    'MembershipService', 'membership_service',
    'ZatcaService', 'zatca_service',
    'InvoiceService', 'invoice_service',
    'ProductService', 'product_service',
    'OrderService', 'order_service',
    'PlatformAnalyticsService', 'platform_analytics_service',
    'NotificationService', 'notification_service',
]

"""
Liyaqa - Marketing automation services
"""
from liyaqa.services.marketing.segment_service import segment_service
from liyaqa.services.marketing.execution_service import execution_service
from liyaqa.services.marketing.campaign_service import campaign_service
from liyaqa.services.marketing.trigger_service import trigger_service
from liyaqa.services.marketing.analytics_service import marketing_analytics_service

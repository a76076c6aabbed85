"""
Liyaqa - Marketing Analytics
Campaign delivery and engagement statistics, A/B results and timelines
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import func

from liyaqa.database import db
from liyaqa.models import (
    DBCampaign, DBCampaignStep, DBCampaignEnrollment, DBMessageLog,
    CampaignStatus, EnrollmentStatus,
)

logger = logging.getLogger(__name__)


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


class MarketingAnalyticsService:

    def message_stats(self, query) -> dict:
        """Aggregate counts over a DBMessageLog query (test sends excluded)"""
        total, sent, delivered, opened, clicked, failed = query.filter(
            DBMessageLog.is_test.is_(False)
        ).with_entities(
            func.count(DBMessageLog.id),
            func.count(DBMessageLog.sent_at),
            func.count(DBMessageLog.delivered_at),
            func.count(DBMessageLog.opened_at),
            func.count(DBMessageLog.clicked_at),
            func.count(DBMessageLog.failed_at)
        ).one()
        return {
            'total': total,
            'sent': sent,
            'delivered': delivered,
            'opened': opened,
            'clicked': clicked,
            'failed': failed,
            'delivery_rate': _rate(delivered, sent),
            'open_rate': _rate(opened, sent),
            'click_rate': _rate(clicked, sent),
            'failure_rate': _rate(failed, total),
        }

    def overview(self, tenant_id: str, days: int = 30, now: datetime = None) -> dict:
        now = now or datetime.utcnow()
        since = now - timedelta(days=days)

        by_status = dict(
            db.session.query(DBCampaign.status, func.count(DBCampaign.id)).filter(
                DBCampaign.tenant_id == tenant_id, DBCampaign.is_template.is_(False)
            ).group_by(DBCampaign.status).all()
        )
        campaigns = {status: by_status.get(status, 0) for status in (
            CampaignStatus.DRAFT, CampaignStatus.ACTIVE, CampaignStatus.PAUSED, CampaignStatus.ARCHIVED
        )}
        campaigns['total'] = sum(by_status.values())

        active_enrollments = DBCampaignEnrollment.query.filter_by(
            tenant_id=tenant_id, status=EnrollmentStatus.ACTIVE
        ).count()
        messages = self.message_stats(DBMessageLog.query.filter(
            DBMessageLog.tenant_id == tenant_id,
            DBMessageLog.created_at >= since
        ))
        return {
            'period_days': days,
            'campaigns': campaigns,
            'active_enrollments': active_enrollments,
            'messages': messages,
        }

    def campaign_analytics(self, campaign: DBCampaign) -> dict:
        enrollments = dict(
            db.session.query(DBCampaignEnrollment.status, func.count(DBCampaignEnrollment.id)).filter(
                DBCampaignEnrollment.campaign_id == campaign.id
            ).group_by(DBCampaignEnrollment.status).all()
        )
        steps = DBCampaignStep.query.filter_by(campaign_id=campaign.id).order_by(
            DBCampaignStep.step_number, DBCampaignStep.ab_variant
        ).all()
        step_stats = []
        for step in steps:
            stats = self.message_stats(DBMessageLog.query.filter(DBMessageLog.step_id == step.id))
            stats.update({
                'step_id': step.id,
                'step_number': step.step_number,
                'name': step.name,
                'channel': step.channel,
                'ab_variant': step.ab_variant,
            })
            step_stats.append(stats)

        return {
            'campaign_id': campaign.id,
            'name': campaign.name,
            'status': campaign.status,
            'total_enrolled': campaign.total_enrolled,
            'total_completed': campaign.total_completed,
            'completion_rate': _rate(campaign.total_completed or 0, campaign.total_enrolled or 0),
            'enrollments': {
                'active': enrollments.get(EnrollmentStatus.ACTIVE, 0),
                'completed': enrollments.get(EnrollmentStatus.COMPLETED, 0),
                'cancelled': enrollments.get(EnrollmentStatus.CANCELLED, 0),
            },
            'messages': self.message_stats(DBMessageLog.query.filter(DBMessageLog.campaign_id == campaign.id)),
            'steps': step_stats,
        }

    def ab_results(self, campaign: DBCampaign, min_sample: Optional[int] = None) -> list:
        """
        Per A/B step: stats for each variant and the winner.

        The winner has the higher open rate, with click rate breaking ties.
        No winner is declared until every variant has sent min_sample messages.
        """
        if min_sample is None:
            min_sample = current_app.config.get('AB_TEST_MIN_SAMPLE', 20)
        steps = DBCampaignStep.query.filter_by(campaign_id=campaign.id, is_ab_test=True).order_by(
            DBCampaignStep.step_number, DBCampaignStep.ab_variant
        ).all()

        grouped = {}
        for step in steps:
            grouped.setdefault(step.step_number, []).append(step)

        results = []
        for step_number, variants in sorted(grouped.items()):
            variant_stats = []
            for step in variants:
                stats = self.message_stats(DBMessageLog.query.filter(DBMessageLog.step_id == step.id))
                stats.update({'variant': step.ab_variant, 'step_id': step.id,
                              'split_percentage': step.ab_split_percentage})
                variant_stats.append(stats)

            enough_data = len(variant_stats) > 1 and all(v['sent'] >= min_sample for v in variant_stats)
            winner = None
            if enough_data:
                ranked = sorted(variant_stats, key=lambda v: (v['open_rate'], v['click_rate']), reverse=True)
                best, runner_up = ranked[0], ranked[1]
                if (best['open_rate'], best['click_rate']) != (runner_up['open_rate'], runner_up['click_rate']):
                    winner = best['variant']
            results.append({
                'step_number': step_number,
                'variants': variant_stats,
                'winner': winner,
                'sufficient_data': enough_data,
                'min_sample': min_sample,
            })
        return results

    def timeline(self, tenant_id: str, campaign_id: str = None, days: int = 30, now: datetime = None) -> list:
        """Daily sent/opened/clicked/failed counts, oldest day first"""
        now = now or datetime.utcnow()
        start = (now - timedelta(days=days - 1)).date()
        buckets = {
            (start + timedelta(days=offset)).isoformat(): {'sent': 0, 'opened': 0, 'clicked': 0, 'failed': 0}
            for offset in range(days)
        }

        query = DBMessageLog.query.filter(
            DBMessageLog.tenant_id == tenant_id,
            DBMessageLog.is_test.is_(False),
            DBMessageLog.created_at >= datetime.combine(start, datetime.min.time()) - timedelta(days=1)
        )
        if campaign_id:
            query = query.filter(DBMessageLog.campaign_id == campaign_id)

        for message in query.all():
            for field, key in (('sent_at', 'sent'), ('opened_at', 'opened'),
                               ('clicked_at', 'clicked'), ('failed_at', 'failed')):
                moment = getattr(message, field)
                if moment is not None:
                    day = moment.date().isoformat()
                    if day in buckets:
                        buckets[day][key] += 1

        return [dict(date=day, **counts) for day, counts in buckets.items()]


marketing_analytics_service = MarketingAnalyticsService()

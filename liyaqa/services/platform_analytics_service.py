"""
Liyaqa - Platform Analytics Service
Cross-tenant revenue, growth and churn metrics for the platform team,
exportable as CSV (bilingual headers) or PDF
"""
import csv
import io
import logging
from datetime import datetime, date, timedelta
from decimal import Decimal
from typing import List, Tuple

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle
from sqlalchemy import func, or_

from liyaqa.database import db
from liyaqa.exceptions import ValidationError
from liyaqa.models import DBTenant, DBMember, DBUser, TenantStatus
from liyaqa.services.audit_service import audit_service
from liyaqa.utils import money

logger = logging.getLogger(__name__)


class ReportType:
    REVENUE = 'revenue'
    CHURN = 'churn'
    GROWTH = 'growth'
    FULL = 'full'

    ALL = [REVENUE, CHURN, GROWTH, FULL]


class ExportFormat:
    CSV = 'csv'
    PDF = 'pdf'

    ALL = [CSV, PDF]


CHURNED_STATUSES = [TenantStatus.DEACTIVATED, TenantStatus.ARCHIVED]
AT_RISK_THRESHOLD = 40
HEADER_COLOR = colors.HexColor('#34495E')
TITLE_COLOR = colors.HexColor('#2980B9')


def _percent(part, whole) -> float:
    return round(float(part) / float(whole) * 100, 2) if whole else 0.0


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _add_months(day: date, months: int) -> date:
    month = day.month - 1 + months
    return date(day.year + month // 12, month % 12 + 1, 1)


class PlatformAnalyticsService:

    # ---------- revenue ----------

    def mrr(self) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(DBTenant.monthly_price_sar), 0)).filter(
            DBTenant.status == TenantStatus.ACTIVE
        ).scalar()
        return money(total)

    def mrr_at(self, moment: datetime) -> Decimal:
        """MRR of tenants that were paying at `moment` (activated, not yet deactivated)"""
        total = db.session.query(func.coalesce(func.sum(DBTenant.monthly_price_sar), 0)).filter(
            DBTenant.activated_at.isnot(None),
            DBTenant.activated_at <= moment,
            or_(DBTenant.deactivated_at.is_(None), DBTenant.deactivated_at > moment)
        ).scalar()
        return money(total)

    def revenue_by_plan(self) -> List[dict]:
        rows = db.session.query(
            DBTenant.plan_name, func.count(DBTenant.id), func.coalesce(func.sum(DBTenant.monthly_price_sar), 0)
        ).filter(DBTenant.status == TenantStatus.ACTIVE).group_by(DBTenant.plan_name).all()
        breakdown = [
            {'plan_name': plan, 'tenant_count': count, 'revenue_sar': str(money(revenue))}
            for plan, count, revenue in rows
        ]
        return sorted(breakdown, key=lambda row: Decimal(row['revenue_sar']), reverse=True)

    # ---------- growth ----------

    def tenant_growth(self, months: int = 12, today: date = None) -> List[dict]:
        """New, churned and net tenants per month, oldest month first"""
        today = today or date.today()
        first = _add_months(_month_start(today), -(months - 1))
        start = datetime.combine(first, datetime.min.time())

        created = db.session.query(DBTenant.created_at).filter(DBTenant.created_at >= start).all()
        churned = db.session.query(DBTenant.deactivated_at).filter(DBTenant.deactivated_at >= start).all()

        buckets = {}
        for offset in range(months):
            buckets[_add_months(first, offset).strftime('%Y-%m')] = {'new_tenants': 0, 'churned_tenants': 0}
        for (moment,) in created:
            key = moment.strftime('%Y-%m')
            if key in buckets:
                buckets[key]['new_tenants'] += 1
        for (moment,) in churned:
            key = moment.strftime('%Y-%m')
            if key in buckets:
                buckets[key]['churned_tenants'] += 1

        return [
            dict(month=month, net_growth=counts['new_tenants'] - counts['churned_tenants'], **counts)
            for month, counts in buckets.items()
        ]

    def geographic_distribution(self) -> List[dict]:
        rows = db.session.query(DBTenant.city, func.count(DBTenant.id)).filter(
            DBTenant.status.notin_(CHURNED_STATUSES)
        ).group_by(DBTenant.city).all()
        distribution = [{'city': city or 'Unknown', 'tenant_count': count} for city, count in rows]
        return sorted(distribution, key=lambda row: (-row['tenant_count'], row['city']))

    # ---------- dashboard ----------

    def dashboard(self, now: datetime = None) -> dict:
        now = now or datetime.utcnow()
        by_status = dict(
            db.session.query(DBTenant.status, func.count(DBTenant.id)).group_by(DBTenant.status).all()
        )
        active = by_status.get(TenantStatus.ACTIVE, 0)
        mrr = self.mrr()
        previous_mrr = self.mrr_at(now - timedelta(days=30))

        return {
            'overview': {
                'total_tenants': sum(by_status.values()),
                'active_tenants': active,
                'trial_tenants': by_status.get(TenantStatus.TRIAL, 0),
                'suspended_tenants': by_status.get(TenantStatus.SUSPENDED, 0),
                'churned_tenants': sum(by_status.get(status, 0) for status in CHURNED_STATUSES),
                'total_end_users': DBMember.query.count(),
                'mrr': str(mrr),
                'arr': str(money(mrr * 12)),
                'average_revenue_per_tenant': str(money(mrr / active)) if active else '0.00',
                'revenue_growth_percent': _percent(mrr - previous_mrr, previous_mrr),
            },
            'revenue_breakdown': self.revenue_by_plan(),
            'tenant_growth': self.tenant_growth(today=now.date()),
            'geographic_distribution': self.geographic_distribution(),
            'generated_at': now.isoformat(),
        }

    # ---------- churn ----------

    def churn_rate(self, start: datetime, end: datetime) -> float:
        """Tenants churned in [start, end] as a share of tenants alive at start"""
        alive_at_start = DBTenant.query.filter(
            DBTenant.created_at < start,
            or_(DBTenant.deactivated_at.is_(None), DBTenant.deactivated_at >= start)
        ).count()
        churned = DBTenant.query.filter(
            DBTenant.deactivated_at >= start,
            DBTenant.deactivated_at <= end
        ).count()
        return _percent(churned, alive_at_start)

    def churn_reasons(self) -> List[dict]:
        rows = db.session.query(DBTenant.deactivation_reason, func.count(DBTenant.id)).filter(
            DBTenant.status.in_(CHURNED_STATUSES)
        ).group_by(DBTenant.deactivation_reason).all()
        total = sum(count for _, count in rows)
        reasons = [
            {'reason': reason or 'Unspecified', 'count': count, 'percentage': _percent(count, total)}
            for reason, count in rows
        ]
        return sorted(reasons, key=lambda row: -row['count'])

    def risk_factors(self, tenant: DBTenant, now: datetime) -> Tuple[int, List[str]]:
        """Heuristic 0-100 churn risk score with the factors behind it"""
        score = 0
        factors = []
        if tenant.status == TenantStatus.SUSPENDED:
            score += 40
            factors.append('Suspended')
        if tenant.status == TenantStatus.TRIAL and tenant.trial_ends_at:
            if tenant.trial_ends_at < now:
                score += 40
                factors.append('Trial expired')
            elif tenant.trial_ends_at < now + timedelta(days=7):
                score += 25
                factors.append('Trial ending within 7 days')

        members = DBMember.query.filter_by(tenant_id=tenant.id).count()
        if members == 0:
            score += 20
            factors.append('No members')
        else:
            recent_check_ins = DBMember.query.filter(
                DBMember.tenant_id == tenant.id,
                DBMember.last_check_in_at >= now - timedelta(days=30)
            ).count()
            if recent_check_ins == 0:
                score += 20
                factors.append('No member check-ins in 30 days')

        last_login = db.session.query(func.max(DBUser.last_login)).filter(DBUser.tenant_id == tenant.id).scalar()
        if last_login is None or last_login < now - timedelta(days=14):
            score += 20
            factors.append('No staff logins in 14 days')
        return min(score, 100), factors

    def at_risk_tenants(self, now: datetime = None, limit: int = 20) -> List[dict]:
        now = now or datetime.utcnow()
        tenants = DBTenant.query.filter(
            DBTenant.status.in_([TenantStatus.TRIAL, TenantStatus.ACTIVE, TenantStatus.SUSPENDED])
        ).all()
        at_risk = []
        for tenant in tenants:
            score, factors = self.risk_factors(tenant, now)
            if score >= AT_RISK_THRESHOLD:
                at_risk.append({
                    'tenant_id': tenant.id,
                    'name': tenant.name,
                    'status': tenant.status,
                    'monthly_price_sar': str(money(tenant.monthly_price_sar)),
                    'risk_score': score,
                    'risk_factors': factors,
                })
        at_risk.sort(key=lambda row: (-row['risk_score'], row['name']))
        return at_risk[:limit]

    def churn_analysis(self, now: datetime = None) -> dict:
        now = now or datetime.utcnow()
        year_start = datetime(now.year, 1, 1)
        return {
            'churn_rate_30d': self.churn_rate(now - timedelta(days=30), now),
            'churn_rate_90d': self.churn_rate(now - timedelta(days=90), now),
            'churn_rate_ytd': self.churn_rate(year_start, now),
            'churn_reasons': self.churn_reasons(),
            'at_risk_tenants': self.at_risk_tenants(now),
            'generated_at': now.isoformat(),
        }

    # ---------- export ----------

    def filename(self, report_type: str, export_format: str, today: date = None) -> str:
        today = today or date.today()
        return f"analytics_{report_type}_{today.strftime('%Y-%m-%d')}.{export_format}"

    def export(self, report_type: str, export_format: str, actor=None, now: datetime = None) -> Tuple[bytes, str, str]:
        """Returns (content, filename, mimetype)"""
        report_type = (report_type or '').lower()
        export_format = (export_format or '').lower()
        if report_type not in ReportType.ALL:
            raise ValidationError(f"type must be one of: {', '.join(ReportType.ALL)}")
        if export_format not in ExportFormat.ALL:
            raise ValidationError(f"format must be one of: {', '.join(ExportFormat.ALL)}")
        now = now or datetime.utcnow()
        logger.info(f"Generating analytics export: type={report_type}, format={export_format}")

        if export_format == ExportFormat.CSV:
            content, mimetype = self._to_csv(report_type, now), 'text/csv; charset=utf-8'
        else:
            content, mimetype = self._to_pdf(report_type, now), 'application/pdf'
        filename = self.filename(report_type, export_format, now.date())

        audit_service.log(
            action=audit_service.ACTION_EXPORT,
            resource_type=audit_service.RESOURCE_ANALYTICS,
            resource_name=filename,
            actor=actor,
            description=f"Exported {report_type} analytics as {export_format}"
        )
        return content, filename, mimetype

    def _csv_sections(self, report_type: str, now: datetime):
        """(english headers, arabic headers, rows) for a report"""
        if report_type == ReportType.GROWTH:
            rows = [
                [g['month'], g['new_tenants'], g['churned_tenants'], g['net_growth']]
                for g in self.tenant_growth(today=now.date())
            ]
            return (['Month', 'New Tenants', 'Churned Tenants', 'Net Growth'],
                    ['الشهر', 'عملاء جدد', 'عملاء مغادرون', 'النمو الصافي'], rows)

        if report_type == ReportType.REVENUE:
            overview = self.dashboard(now)['overview']
            rows = [
                ['MRR (SAR)', overview['mrr']],
                ['ARR (SAR)', overview['arr']],
                ['Avg Revenue Per Tenant (SAR)', overview['average_revenue_per_tenant']],
                ['Revenue Growth %', overview['revenue_growth_percent']],
                ['', ''],
                ['Plan', 'Revenue (SAR)'],
            ]
            rows += [[row['plan_name'], row['revenue_sar']] for row in self.revenue_by_plan()]
            return ['Metric', 'Value'], ['المقياس', 'القيمة'], rows

        if report_type == ReportType.CHURN:
            churn = self.churn_analysis(now)
            rows = [
                ['Churn Rate (30d)', f"{churn['churn_rate_30d']}%"],
                ['Churn Rate (90d)', f"{churn['churn_rate_90d']}%"],
                ['Churn Rate (YTD)', f"{churn['churn_rate_ytd']}%"],
                ['', ''],
                ['Churn Reason', 'Count'],
            ]
            rows += [[r['reason'], r['count']] for r in churn['churn_reasons']]
            rows += [['', ''], ['At-Risk Tenant', 'Risk Score']]
            rows += [[t['name'], t['risk_score']] for t in churn['at_risk_tenants']]
            return ['Metric', 'Value'], ['المقياس', 'القيمة'], rows

        dashboard = self.dashboard(now)
        overview = dashboard['overview']
        churn = self.churn_analysis(now)
        rows = [
            ['Overview', 'Total Tenants', overview['total_tenants']],
            ['Overview', 'Active Tenants', overview['active_tenants']],
            ['Overview', 'Trial Tenants', overview['trial_tenants']],
            ['Overview', 'Churned Tenants', overview['churned_tenants']],
            ['Overview', 'Total End Users', overview['total_end_users']],
            ['Revenue', 'MRR (SAR)', overview['mrr']],
            ['Revenue', 'ARR (SAR)', overview['arr']],
            ['Revenue', 'Revenue Growth %', overview['revenue_growth_percent']],
        ]
        rows += [['Revenue by Plan', r['plan_name'], r['revenue_sar']] for r in dashboard['revenue_breakdown']]
        for g in dashboard['tenant_growth']:
            rows += [
                ['Growth', f"{g['month']} New", g['new_tenants']],
                ['Growth', f"{g['month']} Churned", g['churned_tenants']],
                ['Growth', f"{g['month']} Net", g['net_growth']],
            ]
        rows += [['Geographic', geo['city'], geo['tenant_count']] for geo in dashboard['geographic_distribution']]
        rows += [
            ['Churn', '30d Rate', f"{churn['churn_rate_30d']}%"],
            ['Churn', '90d Rate', f"{churn['churn_rate_90d']}%"],
            ['Churn', 'YTD Rate', f"{churn['churn_rate_ytd']}%"],
        ]
        rows += [['Churn Reasons', r['reason'], r['count']] for r in churn['churn_reasons']]
        return ['Section', 'Metric', 'Value'], ['القسم', 'المقياس', 'القيمة'], rows

    def _to_csv(self, report_type: str, now: datetime) -> bytes:
        headers_en, headers_ar, rows = self._csv_sections(report_type, now)
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(headers_en)
        writer.writerow(headers_ar)
        writer.writerows(rows)
        # BOM so spreadsheet apps detect UTF-8 and render the Arabic header
        return buffer.getvalue().encode('utf-8-sig')

    def _to_pdf(self, report_type: str, now: datetime) -> bytes:
        buffer = io.BytesIO()
        document = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=12 * mm, rightMargin=12 * mm,
                                     topMargin=18 * mm, bottomMargin=12 * mm,
                                     title=f"Liyaqa Platform Analytics - {report_type.upper()} Report")
        styles = getSampleStyleSheet()
        title_style = styles['Title']
        title_style.textColor = TITLE_COLOR

        story = [
            Paragraph(f"Liyaqa Platform Analytics - {report_type.upper()} Report", title_style),
            Paragraph(f"Generated: {now.strftime('%Y-%m-%d')}", styles['Normal']),
            Spacer(1, 10 * mm),
        ]
        if report_type in (ReportType.REVENUE, ReportType.FULL):
            story += self._revenue_section(styles, now)
        if report_type in (ReportType.GROWTH, ReportType.FULL):
            story += self._growth_section(styles, now)
        if report_type in (ReportType.CHURN, ReportType.FULL):
            story += self._churn_section(styles, now)
        story += [Spacer(1, 10 * mm),
                  Paragraph('Generated by Liyaqa Platform - Internal Use Only', styles['Italic'])]

        document.build(story)
        return buffer.getvalue()

    @staticmethod
    def _section(styles, title: str, header: list, rows: list) -> list:
        table = Table([header] + [[str(value) for value in row] for row in rows], repeatRows=1, hAlign='LEFT')
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), HEADER_COLOR),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.lightgrey),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('TOPPADDING', (0, 0), (-1, -1), 4),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
        ]))
        return [Paragraph(title, styles['Heading2']), table, Spacer(1, 6 * mm)]

    def _revenue_section(self, styles, now: datetime) -> list:
        overview = self.dashboard(now)['overview']
        flowables = self._section(styles, 'Revenue Overview', ['Metric', 'Value'], [
            ['MRR (SAR)', overview['mrr']],
            ['ARR (SAR)', overview['arr']],
            ['Avg Revenue Per Tenant', overview['average_revenue_per_tenant']],
            ['Revenue Growth %', f"{overview['revenue_growth_percent']}%"],
        ])
        plans = self.revenue_by_plan()
        if plans:
            flowables += self._section(styles, 'Revenue by Plan', ['Plan', 'Tenants', 'Revenue (SAR)'], [
                [row['plan_name'], row['tenant_count'], row['revenue_sar']] for row in plans
            ])
        return flowables

    def _growth_section(self, styles, now: datetime) -> list:
        flowables = self._section(styles, 'Tenant Growth (12 Months)', ['Month', 'New', 'Churned', 'Net Growth'], [
            [g['month'], g['new_tenants'], g['churned_tenants'], g['net_growth']]
            for g in self.tenant_growth(today=now.date())
        ])
        geo = self.geographic_distribution()
        if geo:
            flowables += self._section(styles, 'Geographic Distribution', ['City', 'Tenant Count'], [
                [row['city'], row['tenant_count']] for row in geo
            ])
        return flowables

    def _churn_section(self, styles, now: datetime) -> list:
        churn = self.churn_analysis(now)
        flowables = self._section(styles, 'Churn Analysis', ['Period', 'Churn Rate'], [
            ['30 Days', f"{churn['churn_rate_30d']}%"],
            ['90 Days', f"{churn['churn_rate_90d']}%"],
            ['Year to Date', f"{churn['churn_rate_ytd']}%"],
        ])
        if churn['churn_reasons']:
            flowables += self._section(styles, 'Churn Reasons', ['Reason', 'Count', 'Percentage'], [
                [r['reason'], r['count'], f"{r['percentage']}%"] for r in churn['churn_reasons']
            ])
        if churn['at_risk_tenants']:
            flowables += self._section(styles, 'At-Risk Tenants', ['Tenant', 'Score', 'Risk Factors'], [
                [t['name'], t['risk_score'], ', '.join(t['risk_factors'])] for t in churn['at_risk_tenants']
            ])
        return flowables


platform_analytics_service = PlatformAnalyticsService()

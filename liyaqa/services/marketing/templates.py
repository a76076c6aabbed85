"""
Liyaqa - Built-in campaign templates

Seeded as template campaigns (tenant_id NULL, is_template=True) keyed by
template_key; tenants copy them with create_from_template.
"""
from liyaqa.models import CampaignType, TriggerType, StepChannel

CAMPAIGN_TEMPLATES = [
    {
        'template_key': 'welcome_sequence',
        'name': 'Welcome Sequence',
        'description': 'Three emails over the first week introducing new members to the club',
        'campaign_type': CampaignType.WELCOME_SEQUENCE,
        'trigger_type': TriggerType.MEMBER_CREATED,
        'trigger_config': {},
        'steps': [
            {
                'name': 'Welcome',
                'channel': StepChannel.EMAIL,
                'delay_days': 0,
                'subject_en': 'Welcome to {{clubName}}, {{firstName}}!',
                'subject_ar': 'أهلاً بك في {{clubName}} يا {{firstName}}!',
                'body_en': 'Hi {{firstName}}, we are thrilled to have you at {{clubName}}. '
                           'Your fitness journey starts today.',
                'body_ar': 'مرحباً {{firstName}}، يسعدنا انضمامك إلى {{clubName}}. '
                           'رحلتك الرياضية تبدأ اليوم.',
            },
            {
                'name': 'Getting started tips',
                'channel': StepChannel.EMAIL,
                'delay_days': 3,
                'subject_en': 'Make the most of your membership',
                'subject_ar': 'استفد من عضويتك إلى أقصى حد',
                'body_en': 'Hi {{firstName}}, book a free orientation session with one of our trainers '
                           'to build a plan that fits you.',
                'body_ar': 'مرحباً {{firstName}}، احجز جلسة تعريفية مجانية مع أحد مدربينا '
                           'لبناء خطة تناسبك.',
            },
            {
                'name': 'First week check-in',
                'channel': StepChannel.EMAIL,
                'delay_days': 4,
                'subject_en': 'How was your first week?',
                'subject_ar': 'كيف كان أسبوعك الأول؟',
                'body_en': 'Hi {{firstName}}, you have completed your first week at {{clubName}}. '
                           'Reply to this email if there is anything we can help with.',
                'body_ar': 'مرحباً {{firstName}}، أكملت أسبوعك الأول في {{clubName}}. '
                           'راسلنا إذا احتجت أي مساعدة.',
            },
        ],
    },
    {
        'template_key': 'expiry_reminder',
        'name': 'Membership Expiry Reminder',
        'description': 'Reminds members seven days before their subscription ends',
        'campaign_type': CampaignType.EXPIRY_REMINDER,
        'trigger_type': TriggerType.DAYS_BEFORE_EXPIRY,
        'trigger_config': {'days': 7},
        'steps': [
            {
                'name': 'Renewal reminder',
                'channel': StepChannel.EMAIL,
                'delay_days': 0,
                'subject_en': 'Your membership expires soon',
                'subject_ar': 'عضويتك على وشك الانتهاء',
                'body_en': 'Hi {{firstName}}, your membership at {{clubName}} expires in 7 days. '
                           'Renew now to keep your progress going.',
                'body_ar': 'مرحباً {{firstName}}، تنتهي عضويتك في {{clubName}} خلال 7 أيام. '
                           'جدد الآن لتواصل تقدمك.',
            },
            {
                'name': 'Last call SMS',
                'channel': StepChannel.SMS,
                'delay_days': 5,
                'body_en': '{{firstName}}, your {{clubName}} membership expires in 2 days. Renew today!',
                'body_ar': '{{firstName}}، تنتهي عضويتك في {{clubName}} بعد يومين. جدد اليوم!',
            },
        ],
    },
    {
        'template_key': 'win_back',
        'name': 'Win-Back',
        'description': 'Invites lapsed members back 14 days after their membership expired',
        'campaign_type': CampaignType.WIN_BACK,
        'trigger_type': TriggerType.DAYS_AFTER_EXPIRY,
        'trigger_config': {'days': 14},
        'steps': [
            {
                'name': 'We miss you',
                'channel': StepChannel.EMAIL,
                'delay_days': 0,
                'subject_en': 'We miss you at {{clubName}}',
                'subject_ar': 'نفتقدك في {{clubName}}',
                'body_en': 'Hi {{firstName}}, it has been a while. Come back this month and enjoy a special '
                           'returning member offer.',
                'body_ar': 'مرحباً {{firstName}}، مضى وقت طويل. عد هذا الشهر واستمتع بعرض خاص '
                           'للأعضاء العائدين.',
            },
        ],
    },
    {
        'template_key': 'birthday',
        'name': 'Birthday Greeting',
        'description': 'Sends a birthday message on the member birthday',
        'campaign_type': CampaignType.BIRTHDAY,
        'trigger_type': TriggerType.BIRTHDAY,
        'trigger_config': {},
        'steps': [
            {
                'name': 'Happy birthday',
                'channel': StepChannel.SMS,
                'delay_days': 0,
                'body_en': 'Happy birthday {{firstName}}! Everyone at {{clubName}} wishes you a great year.',
                'body_ar': 'كل عام وأنت بخير يا {{firstName}}! أسرة {{clubName}} تتمنى لك عاماً رائعاً.',
            },
        ],
    },
    {
        'template_key': 'inactivity',
        'name': 'Inactivity Nudge',
        'description': 'Encourages members who have not checked in for 14 days',
        'campaign_type': CampaignType.INACTIVITY,
        'trigger_type': TriggerType.DAYS_INACTIVE,
        'trigger_config': {'days': 14},
        'steps': [
            {
                'name': 'Check-in nudge',
                'channel': StepChannel.PUSH,
                'delay_days': 0,
                'body_en': '{{firstName}}, we have not seen you in two weeks. Your next workout is waiting!',
                'body_ar': '{{firstName}}، لم نرك منذ أسبوعين. تمرينك القادم بانتظارك!',
            },
        ],
    },
]

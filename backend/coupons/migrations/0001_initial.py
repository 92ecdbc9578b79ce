import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('core', '0001_initial'),
        ('subscriptions', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Coupon',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(max_length=20, unique=True, validators=[django.core.validators.RegexValidator('^[A-Z0-9]{4,20}$', 'Code must be 4-20 alphanumeric characters')])),
                ('type', models.CharField(choices=[('percentage', 'Percentage'), ('flat', 'Flat Amount'), ('free_plan', 'Free Plan')], max_length=20)),
                ('value', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('applicable_plans', models.JSONField(default=list, help_text='Plan codes this coupon applies to')),
                ('expiry_date', models.DateTimeField(blank=True, help_text='Null means the coupon never expires', null=True)),
                ('usage_limit_total', models.PositiveIntegerField(blank=True, help_text='Null means unlimited', null=True)),
                ('usage_limit_per_user', models.BooleanField(default=False, help_text='Limit each user to a single redemption')),
                ('used_count', models.PositiveIntegerField(default=0, editable=False)),
                ('is_active', models.BooleanField(default=True)),
                ('description', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_coupons', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'coupons',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['is_active'], name='idx_coupon_active')],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(('usage_limit_total__isnull', True), ('usage_limit_per_user', True), ('used_count__lte', models.F('usage_limit_total')), _connector='OR'),
                        name='coupon_used_count_within_limit',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='CouponUsage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('coupon_code', models.CharField(max_length=20)),
                ('original_amount', models.DecimalField(decimal_places=2, max_digits=10)),
                ('discount_amount', models.DecimalField(decimal_places=2, max_digits=10)),
                ('final_amount', models.DecimalField(decimal_places=2, max_digits=10)),
                ('applied_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('company', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='coupon_usages', to='core.company')),
                ('coupon', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='usages', to='coupons.coupon')),
                ('payment', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='coupon_usage', to='subscriptions.subscriptionpayment')),
                ('plan', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='coupon_usages', to='subscriptions.plan')),
                ('user', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='coupon_usages', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'coupon_usages',
                'ordering': ['-applied_at', '-id'],
                'indexes': [
                    models.Index(fields=['coupon', 'user'], name='idx_cpnusage_coupon_user'),
                    models.Index(fields=['-applied_at'], name='idx_cpnusage_applied'),
                ],
            },
        ),
    ]

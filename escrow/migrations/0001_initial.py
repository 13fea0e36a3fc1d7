from django.db import migrations, models

import escrow.models
import escrow.utils


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='AuditLog',
            fields=[
                ('id', models.CharField(default=escrow.models.new_audit_id, max_length=40, primary_key=True, serialize=False)),
                ('actor_role', models.CharField(choices=[('admin', 'Admin'), ('cron', 'Cron')], default='admin', max_length=16)),
                ('actor', models.CharField(blank=True, default='', max_length=128)),
                ('action', models.CharField(db_index=True, max_length=64)),
                ('target_type', models.CharField(blank=True, default='', max_length=32)),
                ('target_id', models.TextField(blank=True, default='')),
                ('meta', models.JSONField(blank=True, null=True)),
                ('ip', models.GenericIPAddressField(blank=True, null=True)),
                ('created_at', models.BigIntegerField(db_index=True, default=escrow.utils.now_ms)),
            ],
            options={
                'ordering': ['-created_at', '-id'],
            },
        ),
        migrations.CreateModel(
            name='ChainEventCursor',
            fields=[
                ('id', models.CharField(default='chain-orders', max_length=64, primary_key=True, serialize=False)),
                ('cursor', models.JSONField(blank=True, null=True)),
                ('last_event_ms', models.BigIntegerField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='CronLock',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=128, unique=True)),
                ('expires_at', models.BigIntegerField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name='LedgerCreditReceipt',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('receipt_id', models.CharField(max_length=128, unique=True)),
                ('order_id', models.CharField(blank=True, max_length=64, null=True)),
                ('user_address', models.CharField(max_length=128)),
                ('amount', models.CharField(max_length=32)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('credited', 'Credited'), ('failed', 'Failed')], default='pending', max_length=16)),
                ('source', models.CharField(blank=True, default='manual', max_length=32)),
                ('note', models.CharField(blank=True, default='', max_length=255)),
                ('digest', models.CharField(blank=True, max_length=64, null=True)),
                ('error', models.TextField(blank=True, default='')),
                ('credited_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.CharField(max_length=64, primary_key=True, serialize=False)),
                ('source', models.CharField(choices=[('chain', 'Chain'), ('app', 'App'), ('seed', 'Seed')], default='app', max_length=16)),
                ('user_address', models.CharField(blank=True, default='', max_length=128)),
                ('companion_address', models.CharField(blank=True, max_length=128, null=True)),
                ('item', models.CharField(blank=True, default='', max_length=255)),
                ('amount', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('currency', models.CharField(default='CNY', max_length=8)),
                ('service_fee', models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ('deposit', models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ('chain_status', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('stage', models.CharField(choices=[('pending', 'Pending'), ('confirmed', 'Confirmed'), ('in_progress', 'In progress'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='pending', max_length=16)),
                ('payment_status', models.CharField(blank=True, default='', max_length=32)),
                ('note', models.CharField(blank=True, default='', max_length=255)),
                ('meta', models.JSONField(blank=True, default=dict)),
                ('created_at', models.BigIntegerField(db_index=True, default=escrow.utils.now_ms)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['-created_at', '-id'],
            },
        ),
    ]

import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Delivery',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('business_name', models.CharField(max_length=200, verbose_name='Business name')),
                ('business_address', models.CharField(blank=True, max_length=300, verbose_name='Pickup address')),
                ('business_latitude', models.FloatField()),
                ('business_longitude', models.FloatField()),
                ('destination_address', models.CharField(max_length=300, verbose_name='Destination address')),
                ('destination_latitude', models.FloatField()),
                ('destination_longitude', models.FloatField()),
                ('destination_place_id', models.CharField(blank=True, max_length=255)),
                ('item', models.CharField(max_length=200, verbose_name='Item')),
                ('distance_km', models.FloatField(default=0.0, verbose_name='Distance (km)')),
                ('payment', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10, verbose_name='Payment')),
                ('status', models.CharField(choices=[('posted', 'Posted'), ('accepted', 'Accepted'), ('picked_up', 'Picked up'), ('delivered', 'Delivered')], db_index=True, default='posted', max_length=20, verbose_name='Status')),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now, editable=False)),
                ('accepted_at', models.DateTimeField(blank=True, null=True)),
                ('picked_up_at', models.DateTimeField(blank=True, null=True)),
                ('delivered_at', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('assigned_to', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='assigned_deliveries', to=settings.AUTH_USER_MODEL, verbose_name='Assigned courier')),
                ('business', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='deliveries', to=settings.AUTH_USER_MODEL, verbose_name='Business')),
                ('delivered_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='completed_deliveries', to=settings.AUTH_USER_MODEL, verbose_name='Delivered by')),
            ],
            options={
                'verbose_name': 'Delivery',
                'verbose_name_plural': 'Deliveries',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='CourierLocation',
            fields=[
                ('courier', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, primary_key=True, related_name='current_location', serialize=False, to=settings.AUTH_USER_MODEL)),
                ('latitude', models.FloatField()),
                ('longitude', models.FloatField()),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'verbose_name': 'Courier location',
                'verbose_name_plural': 'Courier locations',
            },
        ),
        migrations.CreateModel(
            name='CourierLocationPing',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('latitude', models.FloatField()),
                ('longitude', models.FloatField()),
                ('recorded_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('courier', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='location_pings', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Courier location ping',
                'verbose_name_plural': 'Courier location pings',
                'ordering': ['-recorded_at'],
            },
        ),
        migrations.AddIndex(
            model_name='delivery',
            index=models.Index(fields=['status', 'created_at'], name='delivery_status_created_idx'),
        ),
        migrations.AddIndex(
            model_name='delivery',
            index=models.Index(fields=['assigned_to', 'status'], name='delivery_courier_status_idx'),
        ),
        migrations.AddIndex(
            model_name='delivery',
            index=models.Index(fields=['business', 'created_at'], name='delivery_business_created_idx'),
        ),
        migrations.AddIndex(
            model_name='courierlocationping',
            index=models.Index(fields=['courier', 'recorded_at'], name='ping_courier_recorded_idx'),
        ),
    ]

from decimal import Decimal

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('drivers', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='ServiceZone',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True)),
                ('display_name', models.CharField(blank=True, max_length=150)),
                ('zone_type', models.CharField(choices=[('local', 'Local'), ('regional', 'Regional'), ('inter_regional', 'Inter-regional'), ('national', 'National'), ('international', 'International')], default='local', max_length=20)),
                ('center_latitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('center_longitude', models.DecimalField(decimal_places=6, max_digits=9)),
                ('radius', models.PositiveIntegerField(blank=True, help_text='Meters', null=True)),
                ('boundaries', models.JSONField(blank=True, help_text='GeoJSON Polygon, [lon, lat] positions', null=True)),
                ('allows_inter_regional', models.BooleanField(default=False)),
                ('inter_regional_fee', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('is_high_risk', models.BooleanField(default=False)),
                ('timezone', models.CharField(default='Africa/Accra', max_length=50)),
                ('currency', models.CharField(default='GHS', max_length=3)),
                ('priority', models.IntegerField(default=0)),
                ('is_active', models.BooleanField(default=True)),
                ('parent_zone', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='child_zones', to='zones.servicezone')),
                ('connected_zones', models.ManyToManyField(blank=True, to='zones.servicezone')),
            ],
            options={
                'db_table': 'service_zones',
                'ordering': ['-priority', 'id'],
            },
        ),
        migrations.CreateModel(
            name='DriverServiceZone',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('can_accept_inter_regional', models.BooleanField(default=False)),
                ('inter_regional_rate', models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True)),
                ('is_active', models.BooleanField(default=True)),
                ('assigned_at', models.DateTimeField(auto_now_add=True)),
                ('driver_profile', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='zone_assignments', to='drivers.driverprofile')),
                ('service_zone', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='driver_assignments', to='zones.servicezone')),
            ],
            options={
                'db_table': 'driver_service_zones',
            },
        ),
        migrations.AddConstraint(
            model_name='driverservicezone',
            constraint=models.UniqueConstraint(fields=('driver_profile', 'service_zone'), name='unique_driver_zone'),
        ),
    ]

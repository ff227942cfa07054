import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='MedicationDefinition',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200, unique=True)),
                ('ingredient1', models.CharField(blank=True, default='', max_length=200)),
                ('concentration1', models.FloatField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ('ingredient2', models.CharField(blank=True, default='', max_length=200)),
                ('concentration2', models.FloatField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ('pharmacy', models.CharField(blank=True, default='', max_length=200)),
                ('injectable', models.BooleanField(default=True)),
                ('pharmacy_url', models.URLField(blank=True, default='')),
                ('qr_url', models.URLField(blank=True, default='')),
                ('qr_image', models.BinaryField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'medication_definitions',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Patient',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('first_name', models.CharField(max_length=100)),
                ('middle_name', models.CharField(blank=True, default='', max_length=100)),
                ('last_name', models.CharField(max_length=100)),
                ('birthdate', models.DateField(blank=True, null=True)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'patients',
                'ordering': ['last_name', 'first_name'],
                'indexes': [models.Index(fields=['last_name', 'first_name'], name='patients_name_idx')],
            },
        ),
        migrations.CreateModel(
            name='Provider',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(max_length=100)),
                ('degree', models.CharField(blank=True, choices=[('MD', 'MD'), ('PA', 'PA'), ('NP', 'NP')], max_length=2, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'db_table': 'providers',
                'constraints': [models.UniqueConstraint(fields=('first_name', 'last_name'), name='unique_provider_name')],
            },
        ),
        migrations.CreateModel(
            name='DispensedMedication',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('dose', models.CharField(blank=True, default='', max_length=50)),
                ('dose_value', models.FloatField(default=0)),
                ('dose_unit', models.CharField(choices=[('mg', 'mg'), ('mcg', 'mcg'), ('ml', 'mL'), ('units', 'units')], default='mg', max_length=10)),
                ('quantity', models.PositiveSmallIntegerField(default=1, validators=[django.core.validators.MinValueValidator(1)])),
                ('quantity_unit', models.CharField(choices=[('syringe', 'Syringe'), ('pen', 'Pen'), ('tablet', 'Tablet'), ('vial', 'Vial'), ('bottle', 'Bottle')], default='syringe', max_length=10)),
                ('frequency', models.CharField(choices=[('daily', 'Daily'), ('weekly', 'Weekly'), ('biweekly', 'Every 2 weeks'), ('monthly', 'Monthly'), ('custom', 'Custom')], default='weekly', max_length=10)),
                ('amount_each_time', models.PositiveSmallIntegerField(default=1, validators=[django.core.validators.MinValueValidator(1)])),
                ('additional_instructions', models.TextField(blank=True, default='')),
                ('dispense_date', models.DateField(default=django.utils.timezone.localdate)),
                ('expiration_date', models.DateField(blank=True, null=True)),
                ('lot_number', models.CharField(blank=True, default='', max_length=50)),
                ('is_active', models.BooleanField(default=True)),
                ('next_dose_due', models.DateField(blank=True, editable=False, null=True)),
                ('sig', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('medication', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='dispenses', to='dispensing.medicationdefinition')),
                ('patient', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='dispenses', to='dispensing.patient')),
                ('prescriber', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='dispenses', to='dispensing.provider')),
            ],
            options={
                'db_table': 'dispensed_medications',
                'ordering': ['-dispense_date', '-created_at'],
                'indexes': [models.Index(fields=['next_dose_due'], name='dispense_next_dose_idx')],
            },
        ),
    ]

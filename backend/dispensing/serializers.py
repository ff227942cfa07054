from rest_framework import serializers
from .models import (
    Patient, Provider, MedicationDefinition, DispensedMedication,
    DoseUnit, QuantityUnit, DosingFrequency, Degree
)
class PatientSerializer(serializers.ModelSerializer):
    display_name = serializers.CharField(read_only=True)
    class Meta:
        model = Patient
        fields = ['id', 'first_name', 'middle_name', 'last_name', 'birthdate', 'is_active', 'display_name', 'created_at']
        read_only_fields = ['created_at']
        extra_kwargs = {'middle_name': {'required': False}}
class ProviderInputSerializer(serializers.Serializer):
    first_name = serializers.CharField(max_length=100)
    last_name = serializers.CharField(max_length=100)
    degree = serializers.ChoiceField(choices=Degree.choices, required=False, allow_null=True)
class ProviderResponseSerializer(serializers.ModelSerializer):
    display_name = serializers.CharField(read_only=True)
    class Meta:
        model = Provider
        fields = ['id', 'first_name', 'last_name', 'degree', 'display_name', 'created_at']
class MedicationInputSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    ingredient1 = serializers.CharField(max_length=200, required=False, allow_blank=True)
    concentration1 = serializers.FloatField(min_value=0, required=False)
    ingredient2 = serializers.CharField(max_length=200, required=False, allow_blank=True)
    concentration2 = serializers.FloatField(min_value=0, required=False)
    pharmacy = serializers.CharField(max_length=200, required=False, allow_blank=True)
    injectable = serializers.BooleanField(required=False)
    pharmacy_url = serializers.URLField(required=False, allow_blank=True)
    qr_url = serializers.URLField(required=False, allow_blank=True)
class MedicationResponseSerializer(serializers.ModelSerializer):
    concentration_info = serializers.CharField(read_only=True)
    has_qr_image = serializers.SerializerMethodField()
    class Meta:
        model = MedicationDefinition
        fields = [
            'id', 'name', 'ingredient1', 'concentration1', 'ingredient2', 'concentration2',
            'concentration_info', 'pharmacy', 'injectable', 'pharmacy_url', 'qr_url', 'has_qr_image', 'created_at'
        ]
    def get_has_qr_image(self, obj):
        return bool(obj.qr_image)
class DispenseCreateSerializer(serializers.Serializer):
    medication_name = serializers.CharField(max_length=200)
    ingredient1 = serializers.CharField(max_length=200, required=False, allow_blank=True)
    concentration1 = serializers.FloatField(min_value=0, required=False)
    ingredient2 = serializers.CharField(max_length=200, required=False, allow_blank=True)
    concentration2 = serializers.FloatField(min_value=0, required=False)
    pharmacy = serializers.CharField(max_length=200, required=False, allow_blank=True)
    injectable = serializers.BooleanField(required=False)
    prescriber_first_name = serializers.CharField(max_length=100)
    prescriber_last_name = serializers.CharField(max_length=100)
    prescriber_degree = serializers.ChoiceField(choices=Degree.choices, required=False, allow_null=True)
    dose = serializers.CharField(max_length=50, required=False, allow_blank=True)
    dose_unit = serializers.ChoiceField(choices=DoseUnit.choices, required=False)
    quantity = serializers.IntegerField(min_value=1, required=False)
    quantity_unit = serializers.ChoiceField(choices=QuantityUnit.choices, required=False)
    frequency = serializers.ChoiceField(choices=DosingFrequency.choices, required=False)
    amount_each_time = serializers.IntegerField(min_value=1, required=False)
    additional_instructions = serializers.CharField(required=False, allow_blank=True)
    dispense_date = serializers.DateField(required=False)
    expiration_date = serializers.DateField(required=False, allow_null=True)
    lot_number = serializers.CharField(max_length=50, required=False, allow_blank=True)
    is_active = serializers.BooleanField(required=False)
    schedule = serializers.BooleanField(required=False, default=False)
class DispenseUpdateSerializer(serializers.Serializer):
    prescriber_first_name = serializers.CharField(max_length=100, required=False)
    prescriber_last_name = serializers.CharField(max_length=100, required=False)
    prescriber_degree = serializers.ChoiceField(choices=Degree.choices, required=False, allow_null=True)
    dose = serializers.CharField(max_length=50, required=False, allow_blank=True)
    dose_unit = serializers.ChoiceField(choices=DoseUnit.choices, required=False)
    quantity = serializers.IntegerField(min_value=1, required=False)
    quantity_unit = serializers.ChoiceField(choices=QuantityUnit.choices, required=False)
    frequency = serializers.ChoiceField(choices=DosingFrequency.choices, required=False)
    amount_each_time = serializers.IntegerField(min_value=1, required=False)
    additional_instructions = serializers.CharField(required=False, allow_blank=True)
    dispense_date = serializers.DateField(required=False)
    expiration_date = serializers.DateField(required=False, allow_null=True)
    lot_number = serializers.CharField(max_length=50, required=False, allow_blank=True)
    is_active = serializers.BooleanField(required=False)
    def validate(self, attrs):
        if 'next_dose_due' in self.initial_data:
            raise serializers.ValidationError({'next_dose_due': 'Next dose due is set by printing or updating the schedule'})
        return attrs
class DispenseResponseSerializer(serializers.ModelSerializer):
    patient_id = serializers.IntegerField(read_only=True)
    medication_name = serializers.CharField(source='medication.name', read_only=True)
    injectable = serializers.BooleanField(source='medication.injectable', read_only=True)
    prescriber_name = serializers.CharField(source='prescriber.display_name', read_only=True)
    dispensed_quantity_text = serializers.CharField(read_only=True)
    instructions = serializers.CharField(read_only=True)
    fill_amount = serializers.FloatField(read_only=True, allow_null=True)
    fill_display = serializers.CharField(read_only=True)
    is_expired = serializers.BooleanField(read_only=True)
    schedule_state = serializers.CharField(read_only=True)
    class Meta:
        model = DispensedMedication
        fields = [
            'id', 'patient_id', 'medication_name', 'injectable', 'prescriber_name',
            'dose', 'dose_value', 'dose_unit', 'fill_amount', 'fill_display',
            'quantity', 'quantity_unit', 'dispensed_quantity_text',
            'frequency', 'amount_each_time', 'additional_instructions', 'sig', 'instructions',
            'dispense_date', 'expiration_date', 'is_expired', 'lot_number',
            'is_active', 'next_dose_due', 'schedule_state', 'created_at'
        ]
class ManualNextDoseSerializer(serializers.Serializer):
    next_dose_due = serializers.DateField()

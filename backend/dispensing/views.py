from rest_framework.decorators import api_view
from rest_framework.response import Response
from rest_framework import status
from django.core.exceptions import ValidationError
from django.http import HttpResponse
from datetime import datetime
import logging
import traceback
import json
from .models import Patient, Provider, MedicationDefinition, DispensedMedication
from .serializers import (
    PatientSerializer,
    ProviderInputSerializer,
    ProviderResponseSerializer,
    MedicationInputSerializer,
    MedicationResponseSerializer,
    DispenseCreateSerializer,
    DispenseUpdateSerializer,
    DispenseResponseSerializer,
    ManualNextDoseSerializer
)
from .exceptions import StoreError, SchedulerError
from .services import (
    create_patient, find_or_create_provider, find_or_create_medication,
    record_dispense, update_dispense
)
from .scheduling import scheduler
from .labels import PrintService, build_label_data
from .dashboard import group_patients_by_week, ASCENDING, DESCENDING
from .dispense_checker import DispenseChecker
from .export import export_to_csv, export_to_excel, get_export_filename, get_dispenses_for_export, get_export_stats
logger = logging.getLogger('dispensing')
def get_print_service():
    return PrintService()
def _dispense_queryset():
    return DispensedMedication.objects.select_related('patient', 'medication', 'prescriber')
def _validation_detail(error):
    if hasattr(error, 'message_dict'):
        return error.message_dict
    return {"detail": error.messages}
def _store_failure(e):
    return Response({"detail": str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
def _parse_date(value, label):
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise ValueError(f"Invalid {label} format. Use YYYY-MM-DD")
@api_view(['GET'])
def api_root(request):
    logger.info(f"API root accessed from {request.META.get('REMOTE_ADDR', 'unknown')}")
    return Response({"message": "Dispensary API"})
@api_view(['GET', 'POST'])
def patients(request):
    if request.method == 'GET':
        queryset = Patient.objects.all()
        active = request.query_params.get('active')
        if active is not None:
            queryset = queryset.filter(is_active=active.lower() in ('1', 'true', 'yes'))
        return Response(PatientSerializer(queryset, many=True).data)
    serializer = PatientSerializer(data=request.data)
    if not serializer.is_valid():
        logger.warning(f"Patient validation failed: {serializer.errors}")
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    try:
        patient = create_patient(**serializer.validated_data)
    except ValidationError as e:
        logger.warning(f"Patient validation failed: {e.message_dict}")
        return Response(_validation_detail(e), status=status.HTTP_400_BAD_REQUEST)
    except StoreError as e:
        return _store_failure(e)
    return Response(PatientSerializer(patient).data, status=status.HTTP_201_CREATED)
@api_view(['GET', 'PATCH', 'DELETE'])
def patient_detail(request, patient_id):
    try:
        patient = Patient.objects.get(id=patient_id)
    except Patient.DoesNotExist:
        return Response({"detail": "Patient not found"}, status=status.HTTP_404_NOT_FOUND)
    if request.method == 'GET':
        return Response(PatientSerializer(patient).data)
    if request.method == 'DELETE':
        logger.info(f"Deleting patient ID: {patient.id}, Name: {patient.display_name}")
        patient.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)
    serializer = PatientSerializer(patient, data=request.data, partial=True)
    if not serializer.is_valid():
        logger.warning(f"Patient update validation failed: {serializer.errors}")
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    serializer.save()
    logger.info(f"Patient updated - ID: {patient.id}")
    return Response(serializer.data)
@api_view(['GET', 'POST'])
def patient_dispenses(request, patient_id):
    try:
        patient = Patient.objects.get(id=patient_id)
    except Patient.DoesNotExist:
        return Response({"detail": "Patient not found"}, status=status.HTTP_404_NOT_FOUND)
    if request.method == 'GET':
        dispenses = _dispense_queryset().filter(patient=patient)
        return Response(DispenseResponseSerializer(dispenses, many=True).data)
    logger.info(f"Dispense request received - Patient ID: {patient.id}, Medication: {request.data.get('medication_name', 'N/A')}")
    serializer = DispenseCreateSerializer(data=request.data)
    if not serializer.is_valid():
        logger.warning(f"Dispense validation failed: {serializer.errors}")
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = dict(serializer.validated_data)
    schedule = data.pop('schedule', False)
    try:
        dispense = record_dispense(patient, data, schedule=schedule)
    except ValidationError as e:
        return Response(_validation_detail(e), status=status.HTTP_400_BAD_REQUEST)
    except StoreError as e:
        return _store_failure(e)
    return Response(DispenseResponseSerializer(dispense).data, status=status.HTTP_201_CREATED)
@api_view(['POST'])
def validate_dispense(request, patient_id):
    try:
        patient = Patient.objects.get(id=patient_id)
    except Patient.DoesNotExist:
        return Response({"detail": "Patient not found"}, status=status.HTTP_404_NOT_FOUND)
    serializer = DispenseCreateSerializer(data=request.data)
    if not serializer.is_valid():
        logger.warning(f"Validation failed: {serializer.errors}")
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    validation_result = DispenseChecker.validate_dispense(patient, serializer.validated_data)
    logger.info(f"Validation complete - Patient ID: {patient.id}, valid: {validation_result['valid']}, errors: {len(validation_result['errors'])}, warnings: {len(validation_result['warnings'])}")
    if validation_result['valid']:
        return Response(validation_result, status=status.HTTP_200_OK)
    return Response(validation_result, status=status.HTTP_400_BAD_REQUEST)
@api_view(['GET', 'PATCH', 'DELETE'])
def dispense_detail(request, dispense_id):
    try:
        dispense = _dispense_queryset().get(id=dispense_id)
    except DispensedMedication.DoesNotExist:
        return Response({"detail": "Dispensed medication not found"}, status=status.HTTP_404_NOT_FOUND)
    if request.method == 'GET':
        return Response(DispenseResponseSerializer(dispense).data)
    if request.method == 'DELETE':
        logger.info(f"Deleting dispense ID: {dispense.id}")
        dispense.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)
    serializer = DispenseUpdateSerializer(data=request.data)
    if not serializer.is_valid():
        logger.warning(f"Dispense update validation failed: {serializer.errors}")
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    try:
        update_dispense(dispense, serializer.validated_data)
    except ValidationError as e:
        return Response(_validation_detail(e), status=status.HTTP_400_BAD_REQUEST)
    except StoreError as e:
        return _store_failure(e)
    return Response(DispenseResponseSerializer(dispense).data)
@api_view(['GET'])
def dispense_label(request, dispense_id):
    try:
        dispense = _dispense_queryset().get(id=dispense_id)
    except DispensedMedication.DoesNotExist:
        return Response({"detail": "Dispensed medication not found"}, status=status.HTTP_404_NOT_FOUND)
    return Response(build_label_data(dispense).to_dict())
@api_view(['POST'])
def print_dispense(request, dispense_id):
    try:
        dispense = _dispense_queryset().get(id=dispense_id)
    except DispensedMedication.DoesNotExist:
        return Response({"detail": "Dispensed medication not found"}, status=status.HTTP_404_NOT_FOUND)
    try:
        service = get_print_service()
        outcome = service.print_and_update(dispense)
    except Exception as e:
        logger.error(f"Failed to print label for dispense ID: {dispense.id}, error: {str(e)}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        return Response(
            {"detail": f"Failed to print label: {str(e)}"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    result = outcome.schedules[0]
    if not result.ok:
        return _store_failure(result.error)
    return Response({
        "schedule": result.to_dict(),
        "label": build_label_data(dispense).to_dict(),
        "document": outcome.document.decode('utf-8', errors='replace'),
        "content_type": service.printer.content_type
    })
@api_view(['POST'])
def reprint_dispense(request, dispense_id):
    try:
        dispense = _dispense_queryset().get(id=dispense_id)
    except DispensedMedication.DoesNotExist:
        return Response({"detail": "Dispensed medication not found"}, status=status.HTTP_404_NOT_FOUND)
    try:
        service = get_print_service()
        document = service.reprint(dispense)
    except Exception as e:
        logger.error(f"Failed to reprint label for dispense ID: {dispense.id}, error: {str(e)}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        return Response(
            {"detail": f"Failed to print label: {str(e)}"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    response = HttpResponse(document, content_type=service.printer.content_type)
    response['Content-Disposition'] = f'attachment; filename="label_{dispense.id}.{service.printer.extension}"'
    return response
@api_view(['POST'])
def update_next_dose(request, dispense_id):
    try:
        dispense = _dispense_queryset().get(id=dispense_id)
    except DispensedMedication.DoesNotExist:
        return Response({"detail": "Dispensed medication not found"}, status=status.HTTP_404_NOT_FOUND)
    result = scheduler.update_next_dose(dispense)
    if not result.ok:
        return _store_failure(result.error)
    return Response(result.to_dict())
@api_view(['POST'])
def set_next_dose(request, dispense_id):
    try:
        dispense = _dispense_queryset().get(id=dispense_id)
    except DispensedMedication.DoesNotExist:
        return Response({"detail": "Dispensed medication not found"}, status=status.HTTP_404_NOT_FOUND)
    serializer = ManualNextDoseSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    try:
        result = scheduler.set_manual_next_dose(dispense, serializer.validated_data['next_dose_due'])
    except SchedulerError as e:
        logger.warning(f"Manual next dose rejected - dispense ID: {dispense.id}, reason: {str(e)}")
        return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
    if not result.ok:
        return _store_failure(result.error)
    return Response(result.to_dict())
@api_view(['GET', 'POST'])
def medications(request):
    if request.method == 'GET':
        queryset = MedicationDefinition.objects.all()
        return Response(MedicationResponseSerializer(queryset, many=True).data)
    serializer = MedicationInputSerializer(data=request.data)
    if not serializer.is_valid():
        logger.warning(f"Medication template validation failed: {serializer.errors}")
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = dict(serializer.validated_data)
    created = not MedicationDefinition.objects.filter(name=data['name'].strip()).exists()
    try:
        medication = find_or_create_medication(data.pop('name'), **data)
    except ValidationError as e:
        return Response(_validation_detail(e), status=status.HTTP_400_BAD_REQUEST)
    return Response(
        MedicationResponseSerializer(medication).data,
        status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
    )
@api_view(['GET'])
def medication_detail(request, medication_id):
    try:
        medication = MedicationDefinition.objects.get(id=medication_id)
    except MedicationDefinition.DoesNotExist:
        return Response({"detail": "Medication template not found"}, status=status.HTTP_404_NOT_FOUND)
    return Response(MedicationResponseSerializer(medication).data)
@api_view(['GET'])
def medication_qr(request, medication_id):
    try:
        medication = MedicationDefinition.objects.get(id=medication_id)
    except MedicationDefinition.DoesNotExist:
        return Response({"detail": "Medication template not found"}, status=status.HTTP_404_NOT_FOUND)
    if not medication.qr_image:
        return Response({"detail": "No QR code for this medication"}, status=status.HTTP_404_NOT_FOUND)
    return HttpResponse(bytes(medication.qr_image), content_type='image/png')
@api_view(['GET', 'POST'])
def providers(request):
    if request.method == 'GET':
        queryset = Provider.objects.order_by('last_name', 'first_name')
        return Response(ProviderResponseSerializer(queryset, many=True).data)
    serializer = ProviderInputSerializer(data=request.data)
    if not serializer.is_valid():
        logger.warning(f"Provider validation failed: {serializer.errors}")
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data
    created = not Provider.objects.filter(first_name=data['first_name'], last_name=data['last_name']).exists()
    provider = find_or_create_provider(data['first_name'], data['last_name'], data.get('degree'))
    return Response(
        ProviderResponseSerializer(provider).data,
        status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
    )
@api_view(['GET'])
def dashboard(request):
    week_order = request.query_params.get('week_order')
    patient_order = request.query_params.get('patient_order')
    for name, value in (('week_order', week_order), ('patient_order', patient_order)):
        if value is not None and value not in (ASCENDING, DESCENDING):
            return Response(
                {"detail": f"Invalid {name}. Must be '{ASCENDING}' or '{DESCENDING}'"},
                status=status.HTTP_400_BAD_REQUEST
            )
    queryset = Patient.objects.filter(is_active=True).prefetch_related('dispenses')
    grouping = group_patients_by_week(queryset, week_order=week_order, patient_order=patient_order)
    return Response(grouping.to_dict())

def _export_filters(params):
    start_date = None
    end_date = None
    if params.get('start_date'):
        start_date = _parse_date(params['start_date'], 'start_date')
    if params.get('end_date'):
        end_date = _parse_date(params['end_date'], 'end_date')
    return start_date, end_date, params.get('prescriber'), params.get('medication')

def export_dispenses(request):
    try:
        format_param = request.GET.get('format', 'csv').lower()
        if format_param not in ['csv', 'excel', 'xlsx']:
            return HttpResponse(
                json.dumps({"detail": "Invalid format. Must be 'csv' or 'excel'"}),
                content_type='application/json',
                status=400
            )

        if format_param == 'excel':
            format_param = 'xlsx'

        try:
            start_date, end_date, prescriber, medication = _export_filters(request.GET)
        except ValueError as e:
            return HttpResponse(
                json.dumps({"detail": str(e)}),
                content_type='application/json',
                status=400
            )

        logger.info(f"Export request - format: {format_param}, start_date: {start_date}, end_date: {end_date}, prescriber: {prescriber}, medication: {medication}")

        if format_param == 'csv':
            csv_content = export_to_csv(start_date, end_date, prescriber, medication)
            filename = get_export_filename('csv', start_date, end_date)
            response = HttpResponse(csv_content, content_type='text/csv')
            response['Content-Disposition'] = f'attachment; filename="{filename}"'
            logger.info(f"CSV export completed - filename: {filename}")
            return response

        excel_content = export_to_excel(start_date, end_date, prescriber, medication)
        filename = get_export_filename('xlsx', start_date, end_date)
        response = HttpResponse(excel_content, content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')
        response['Content-Disposition'] = f'attachment; filename="{filename}"'
        logger.info(f"Excel export completed - filename: {filename}")
        return response

    except Exception as e:
        logger.error(f"Error in export_dispenses: {str(e)}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        return HttpResponse(
            json.dumps({"detail": f"Internal server error: {str(e)}"}),
            content_type='application/json',
            status=500
        )

@api_view(['GET'])
def export_stats(request):
    try:
        start_date, end_date, prescriber, medication = _export_filters(request.query_params)
    except ValueError as e:
        return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

    dispenses = get_dispenses_for_export(start_date, end_date, prescriber, medication)
    stats = get_export_stats(dispenses)

    if start_date and end_date:
        stats["date_range"] = f"{start_date.strftime('%Y-%m-%d')} to {end_date.strftime('%Y-%m-%d')}"
    elif start_date:
        stats["date_range"] = f"From {start_date.strftime('%Y-%m-%d')}"
    elif end_date:
        stats["date_range"] = f"Until {end_date.strftime('%Y-%m-%d')}"
    else:
        stats["date_range"] = "All time"

    logger.info(f"Export stats requested - total_dispenses: {stats['total_dispenses']}, scheduled: {stats['scheduled']}")
    return Response(stats)

from django.urls import path
from . import views
urlpatterns = [
    path('patients/', views.patients, name='patients'),
    path('patients/<int:patient_id>', views.patient_detail, name='patient_detail'),
    path('patients/<int:patient_id>/dispenses', views.patient_dispenses, name='patient_dispenses'),
    path('patients/<int:patient_id>/dispenses/validate', views.validate_dispense, name='validate_dispense'),
    path('dispenses/export/stats', views.export_stats, name='export_stats'),
    path('dispenses/export', views.export_dispenses, name='export_dispenses'),
    path('dispenses/<int:dispense_id>', views.dispense_detail, name='dispense_detail'),
    path('dispenses/<int:dispense_id>/label', views.dispense_label, name='dispense_label'),
    path('dispenses/<int:dispense_id>/print', views.print_dispense, name='print_dispense'),
    path('dispenses/<int:dispense_id>/reprint', views.reprint_dispense, name='reprint_dispense'),
    path('dispenses/<int:dispense_id>/update-next-dose', views.update_next_dose, name='update_next_dose'),
    path('dispenses/<int:dispense_id>/next-dose', views.set_next_dose, name='set_next_dose'),
    path('medications/', views.medications, name='medications'),
    path('medications/<int:medication_id>', views.medication_detail, name='medication_detail'),
    path('medications/<int:medication_id>/qr', views.medication_qr, name='medication_qr'),
    path('providers/', views.providers, name='providers'),
    path('dashboard', views.dashboard, name='dashboard'),
]

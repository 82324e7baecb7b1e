"""
Domain importers, one strategy per job type.
"""
from ..models import JobTypeChoices
from .appointments import AppointmentImporter
from .clinical import ClinicalRecordImporter
from .financial import FinancialImporter
from .patients import PatientImporter

IMPORTERS = {
    JobTypeChoices.PATIENTS: PatientImporter,
    JobTypeChoices.APPOINTMENTS: AppointmentImporter,
    JobTypeChoices.CLINICAL: ClinicalRecordImporter,
    JobTypeChoices.FINANCIAL: FinancialImporter,
}


def get_importer_class(job_type):
    try:
        return IMPORTERS[job_type]
    except KeyError:
        raise ValueError(f'No importer for job type: {job_type}')


def get_importer(job, repositories):
    """Instantiate the importer for job.type."""
    return get_importer_class(job.type)(job, repositories)


__all__ = [
    'IMPORTERS',
    'get_importer',
    'get_importer_class',
    'PatientImporter',
    'AppointmentImporter',
    'ClinicalRecordImporter',
    'FinancialImporter',
]

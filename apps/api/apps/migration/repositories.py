"""
Entity repositories: the create/delete surface the engine uses on domain data.

Repositories are clinic-scoped. Database failures are translated:
- ValidationError / IntegrityError  -> RepositoryRowError (row is bad)
- OperationalError / InterfaceError -> RepositoryUnavailable (transient)
"""
import uuid

from django.core.exceptions import ValidationError
from django.db import IntegrityError, InterfaceError, OperationalError, transaction
from django.db.models import ProtectedError, RestrictedError

from apps.clinical.models import Appointment, Encounter, Patient
from apps.finance.models import Receivable

from .exceptions import RepositoryRowError, RepositoryUnavailable
from .models import EntityTypeChoices


def format_validation_error(error):
    """Flatten a Django ValidationError into one line."""
    if hasattr(error, 'error_dict'):
        parts = []
        for field, messages in error.message_dict.items():
            text = '; '.join(messages)
            parts.append(text if field == '__all__' else f'{field}: {text}')
        return '; '.join(parts)
    return '; '.join(error.messages)


class EntityRepository:
    """Base repository; subclasses set model and entity_type."""
    model = None
    entity_type = None

    def __init__(self, clinic):
        self.clinic = clinic

    def queryset(self):
        return self.model.objects.filter(clinic=self.clinic)

    def get(self, entity_id):
        try:
            return self.queryset().filter(pk=entity_id).first()
        except (ValueError, ValidationError):
            return None

    def find_by_external_id(self, external_id):
        if not external_id:
            return None
        return self.queryset().filter(external_id=external_id).first()

    def create(self, **fields):
        """
        Validate and insert one entity.

        Returns:
            str primary key of the new entity

        Raises:
            RepositoryRowError: model validation or constraint failure
            RepositoryUnavailable: database unavailable or statement timed out
        """
        instance = self.model(clinic=self.clinic, **fields)
        try:
            with transaction.atomic():
                instance.full_clean()
                instance.save(force_insert=True)
        except ValidationError as e:
            raise RepositoryRowError(format_validation_error(e)) from e
        except IntegrityError as e:
            raise RepositoryRowError(f'Constraint violation: {e}') from e
        except (OperationalError, InterfaceError) as e:
            raise RepositoryUnavailable(f'Database unavailable: {e}') from e
        return str(instance.pk)

    def delete(self, entity_id):
        """
        Delete one entity.

        Returns:
            True if a row was deleted, False if it was already gone

        Raises:
            RepositoryRowError: other records still reference the entity
            RepositoryUnavailable: database unavailable
        """
        try:
            with transaction.atomic():
                deleted, _ = self.queryset().filter(pk=entity_id).delete()
        except ProtectedError as e:
            raise self._still_referenced(entity_id, e.protected_objects) from e
        except RestrictedError as e:
            raise self._still_referenced(entity_id, e.restricted_objects) from e
        except (OperationalError, InterfaceError) as e:
            raise RepositoryUnavailable(f'Database unavailable: {e}') from e
        return deleted > 0

    def _still_referenced(self, entity_id, blocking_objects):
        blockers = sorted({str(obj._meta.verbose_name) for obj in blocking_objects})
        return RepositoryRowError(
            f'{self.model._meta.verbose_name} {entity_id} is still referenced by: {", ".join(blockers)}'
        )


class PatientRepository(EntityRepository):
    model = Patient
    entity_type = EntityTypeChoices.PATIENT

    def find_by_cpf(self, cpf):
        if not cpf:
            return None
        return self.queryset().filter(cpf=cpf).first()

    def resolve(self, external_id=None, cpf=None, patient_id=None):
        """
        Find a patient by source identifier, CPF or primary key (first match wins).
        """
        if external_id:
            patient = self.find_by_external_id(external_id)
            if patient:
                return patient
        if cpf:
            patient = self.find_by_cpf(cpf)
            if patient:
                return patient
        if patient_id:
            try:
                return self.get(uuid.UUID(str(patient_id)))
            except ValueError:
                return None
        return None


class AppointmentRepository(EntityRepository):
    model = Appointment
    entity_type = EntityTypeChoices.APPOINTMENT


class EncounterRepository(EntityRepository):
    model = Encounter
    entity_type = EntityTypeChoices.ENCOUNTER


class ReceivableRepository(EntityRepository):
    model = Receivable
    entity_type = EntityTypeChoices.RECEIVABLE


class RepositorySet:
    """All repositories of one clinic, addressable by ledger entity type."""

    def __init__(self, clinic):
        self.clinic = clinic
        self.patients = PatientRepository(clinic)
        self.appointments = AppointmentRepository(clinic)
        self.encounters = EncounterRepository(clinic)
        self.receivables = ReceivableRepository(clinic)
        self._by_entity_type = {
            repo.entity_type: repo
            for repo in (self.patients, self.appointments, self.encounters, self.receivables)
        }

    @classmethod
    def for_clinic(cls, clinic):
        return cls(clinic)

    def for_entity_type(self, entity_type):
        try:
            return self._by_entity_type[entity_type]
        except KeyError:
            raise RepositoryRowError(f'Unknown entity type: {entity_type}')

from datetime import date

from sqlalchemy.orm import Session

from backend.models.availability import AvailabilityTemplate, ProviderVacation
from backend.models.provider import Provider, ProviderResource, Resource


def _resource_filter(column, resource_id: int | None):
    if resource_id is None:
        return column.is_(None)
    return column == resource_id


class AvailabilityStore:
    """Read access to weekly templates plus their wholesale replacement."""

    def __init__(self, session: Session):
        self.session = session

    def get_provider(self, provider_id: int) -> Provider | None:
        return self.session.get(Provider, provider_id)

    def get_resource(self, resource_id: int) -> Resource | None:
        return self.session.get(Resource, resource_id)

    def is_associated(self, provider_id: int, resource_id: int) -> bool:
        return self.session.query(ProviderResource).filter(
            ProviderResource.provider_id == provider_id,
            ProviderResource.resource_id == resource_id,
        ).first() is not None

    def get_template(
        self,
        kind: str,
        provider_id: int,
        resource_id: int | None,
        day_of_week: int,
    ) -> AvailabilityTemplate | None:
        return self.session.query(AvailabilityTemplate).filter(
            AvailabilityTemplate.kind == kind,
            AvailabilityTemplate.provider_id == provider_id,
            _resource_filter(AvailabilityTemplate.resource_id, resource_id),
            AvailabilityTemplate.day_of_week == day_of_week,
        ).order_by(AvailabilityTemplate.id.asc()).first()

    def list_templates(self, kind: str, provider_id: int, resource_id: int | None) -> list[AvailabilityTemplate]:
        return self.session.query(AvailabilityTemplate).filter(
            AvailabilityTemplate.kind == kind,
            AvailabilityTemplate.provider_id == provider_id,
            _resource_filter(AvailabilityTemplate.resource_id, resource_id),
        ).order_by(AvailabilityTemplate.day_of_week.asc()).all()

    def list_resource_templates(
        self,
        kind: str,
        resource_id: int,
        exclude_provider_id: int | None = None,
    ) -> list[AvailabilityTemplate]:
        query = self.session.query(AvailabilityTemplate).filter(
            AvailabilityTemplate.kind == kind,
            AvailabilityTemplate.resource_id == resource_id,
            AvailabilityTemplate.is_available.is_(True),
        )
        if exclude_provider_id is not None:
            query = query.filter(AvailabilityTemplate.provider_id != exclude_provider_id)
        return query.all()

    def replace_templates(
        self,
        kind: str,
        provider_id: int,
        resource_id: int | None,
        templates: list[AvailabilityTemplate],
    ) -> list[AvailabilityTemplate]:
        for existing in self.list_templates(kind, provider_id, resource_id):
            self.session.delete(existing)
        self.session.flush()

        self.session.add_all(templates)
        self.session.commit()
        for template in templates:
            self.session.refresh(template)
        return templates

    def vacation_for(self, provider_id: int, on_date: date) -> ProviderVacation | None:
        return self.session.query(ProviderVacation).filter(
            ProviderVacation.provider_id == provider_id,
            ProviderVacation.start_date <= on_date,
            ProviderVacation.end_date >= on_date,
        ).first()

    def vacations_between(self, provider_id: int, start: date, end: date) -> list[ProviderVacation]:
        return self.session.query(ProviderVacation).filter(
            ProviderVacation.provider_id == provider_id,
            ProviderVacation.start_date <= end,
            ProviderVacation.end_date >= start,
        ).all()

    def add_vacation(
        self,
        provider_id: int,
        start_date: date,
        end_date: date,
        reason: str | None = None,
    ) -> ProviderVacation:
        vacation = ProviderVacation(
            provider_id=provider_id,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
        )
        self.session.add(vacation)
        self.session.commit()
        self.session.refresh(vacation)
        return vacation

    def rollback(self) -> None:
        self.session.rollback()

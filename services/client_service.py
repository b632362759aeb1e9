"""
ClientService - manages a business's client roster
"""

import re
from datetime import datetime
from typing import Dict, Any, List, Optional

from logging_config import get_logger
from repositories.base_repository import PaginationParams, SortOrder
from repositories.client_repository import ClientRepository
from services.common.errors import ValidationError, NotFound, ExternalServiceError
from services.common.result import Result
from utils.datetime_utils import ensure_utc, parse_iso_datetime

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

EDITABLE_FIELDS = ('name', 'email', 'phone', 'last_visit', 'tags', 'client_metadata')


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email.strip()) is not None


def normalize_tags(tags) -> List[str]:
    """Lower-cased, de-duplicated tags in first-seen order"""
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(',')
    seen = []
    for tag in tags:
        tag = str(tag).strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class ClientService:
    def __init__(self, client_repository: ClientRepository, ai_service=None):
        self.client_repository = client_repository
        self.ai_service = ai_service

    def list_clients(self, business_id: int) -> Result:
        return Result.success(self.client_repository.find_by_business(business_id))

    def get_clients_page(self, business_id: int, page: int = 1, per_page: int = 50) -> Result:
        paginated = self.client_repository.get_paginated(
            PaginationParams(page=max(page, 1), per_page=per_page),
            filters={'user_id': business_id},
            order_by='created_at',
            order=SortOrder.DESC,
        )
        return Result.success(paginated.items, metadata={
            'total': paginated.total,
            'page': paginated.page,
            'per_page': paginated.per_page,
            'pages': paginated.pages,
        })

    def search_clients(self, business_id: int, query: str) -> Result:
        return Result.success(self.client_repository.search(query, business_id))

    def get_client(self, business_id: int, client_id: int) -> Result:
        client = self.client_repository.get_owned(client_id, business_id)
        if client is None:
            return Result.from_error(NotFound(f"Client {client_id} not found"))
        return Result.success(client)

    def _clean_fields(self, data: Dict[str, Any], creating: bool) -> Dict[str, Any]:
        fields = {key: data[key] for key in EDITABLE_FIELDS if key in data}

        if creating or 'name' in fields:
            name = (fields.get('name') or '').strip()
            if not name:
                raise ValidationError("Client name is required")
            fields['name'] = name

        if creating or 'email' in fields:
            email = (fields.get('email') or '').strip()
            if not is_valid_email(email):
                raise ValidationError(f"Invalid email address: {email or '(empty)'}")
            fields['email'] = email

        if creating or 'tags' in fields:
            fields['tags'] = normalize_tags(fields.get('tags'))

        if 'last_visit' in fields and fields['last_visit'] is not None:
            last_visit = fields['last_visit']
            if isinstance(last_visit, str):
                parsed = parse_iso_datetime(last_visit)
                if parsed is None:
                    raise ValidationError(f"Invalid last visit date: {last_visit}")
                last_visit = parsed
            elif not isinstance(last_visit, datetime):
                raise ValidationError("Invalid last visit date")
            fields['last_visit'] = ensure_utc(last_visit)

        return fields

    def create_client(self, business_id: int, data: Dict[str, Any]) -> Result:
        try:
            fields = self._clean_fields(data, creating=True)
            if self.client_repository.find_by_email(business_id, fields['email']):
                raise ValidationError(f"A client with email {fields['email']} already exists")
            client = self.client_repository.create(user_id=business_id, **fields)
            self.client_repository.commit()
        except ValidationError as e:
            return Result.from_error(e)

        logger.info("Client created", business_id=business_id, client_id=client.id)
        return Result.success(client)

    def update_client(self, business_id: int, client_id: int, data: Dict[str, Any]) -> Result:
        client = self.client_repository.get_owned(client_id, business_id)
        if client is None:
            return Result.from_error(NotFound(f"Client {client_id} not found"))
        try:
            fields = self._clean_fields(data, creating=False)
            if 'email' in fields:
                existing = self.client_repository.find_by_email(business_id, fields['email'])
                if existing is not None and existing.id != client.id:
                    raise ValidationError(f"A client with email {fields['email']} already exists")
            self.client_repository.update(client, **fields)
            self.client_repository.commit()
        except ValidationError as e:
            return Result.from_error(e)
        return Result.success(client)

    def delete_client(self, business_id: int, client_id: int) -> Result:
        client = self.client_repository.get_owned(client_id, business_id)
        if client is None:
            return Result.from_error(NotFound(f"Client {client_id} not found"))
        if not self.client_repository.delete(client):
            return Result.failure(f"Client {client_id} could not be deleted", code='DELETE_FAILED')
        self.client_repository.commit()
        logger.info("Client deleted", business_id=business_id, client_id=client_id)
        return Result.success(True)

    def import_clients(self, business_id: int, csv_text: str) -> Result:
        """
        Import clients from raw CSV text, cleaned up by the AI service.

        Rows whose email already exists for the business are skipped.

        Returns:
            Result with {'imported', 'skipped', 'errors'}
        """
        if not csv_text or not csv_text.strip():
            return Result.from_error(ValidationError("CSV data is required"))
        if self.ai_service is None:
            return Result.failure("Client import is not configured", code='NOT_CONFIGURED')

        try:
            rows = self.ai_service.clean_client_data(csv_text)
        except ExternalServiceError as e:
            logger.error("Client data cleaning failed", business_id=business_id, error=str(e))
            return Result.from_error(e)

        imported, skipped, errors = 0, 0, []
        for row in rows:
            if not is_valid_email(row.email):
                errors.append(f"{row.name}: invalid email {row.email}")
                continue
            if self.client_repository.find_by_email(business_id, row.email):
                skipped += 1
                continue
            self.client_repository.create(
                user_id=business_id,
                name=row.name,
                email=row.email,
                phone=row.phone,
                tags=normalize_tags(row.tags),
                last_visit=row.last_visit,
            )
            imported += 1

        self.client_repository.commit()
        logger.info("Client import finished", business_id=business_id,
                    imported=imported, skipped=skipped, errors=len(errors))
        return Result.success({'imported': imported, 'skipped': skipped, 'errors': errors})

"""
tests/test_app.py
Tests for app-wide behaviour: the published OpenAPI error schema.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_openapi_documents_error_envelope(client: AsyncClient):
    response = await client.get("/openapi.json")
    assert response.status_code == 200
    schema = response.json()

    error_schema = schema["components"]["schemas"]["ErrorResponse"]
    assert set(error_schema["properties"]) == {"error", "details", "request_id"}

    responses = schema["paths"]["/properties"]["get"]["responses"]
    for code in ("400", "404", "500"):
        ref = responses[code]["content"]["application/json"]["schema"]["$ref"]
        assert ref == "#/components/schemas/ErrorResponse"

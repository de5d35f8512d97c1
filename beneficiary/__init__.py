"""Beneficiary Services Package.

Client-side layer for health insurance beneficiaries, including:

- Identity verification (national ID OCR and face matching)
- Registration and the ESHIC insurance card
- Policies, claims, consent requests and notifications from the backend
- HCX protocol FHIR bundles
- A FastAPI service the mobile and web screens call

Usage:
    # Development:
    uvicorn beneficiary.app:create_app --factory --reload --port 8080

Modules:
    app: FastAPI application factory
    clients: Backend, identity-verification and OAuth2 clients
    kyc: Capture components and the KYC flow
    fhir: FHIR R4 resource builders
    session: Persisted session store
    state: Dashboard state objects
"""

__version__ = "0.1.0"

"""English and Arabic messages for alerts and progress text."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"
SUPPORTED_LANGUAGES = ("en", "ar")

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "action.retry": "Try again",
        "action.retake_selfie": "Retake selfie",
        "action.continue": "Continue",
        "action.cancel": "Cancel",
        "kyc.title": "Identity Verification",
        "kyc.reading_id": "Reading your National ID...",
        "kyc.matching_face": "Verifying face match...",
        "kyc.creating_account": "Creating your account...",
        "kyc.issuing_card": "Issuing your health insurance card...",
        "kyc.completed": "Identity verified successfully",
        "kyc.face_mismatch.title": "Warning",
        "kyc.face_mismatch.message": "We could not verify that your face matches your ID. Do you want to continue?",
        "kyc.verification_failed.title": "Verification error",
        "kyc.verification_failed.message": "Something went wrong while processing your data.",
        "kyc.registration_failed.title": "Registration error",
        "kyc.registration_failed.message": "Something went wrong while creating your account.",
        "auth.otp_sent": "A verification code was sent to {phone}",
        "auth.resend_wait": "You can request a new code in {seconds} seconds",
        "auth.invalid_phone": "Please enter a valid phone number",
        "auth.invalid_otp": "Please enter the {length}-digit code",
        "auth.invalid_national_id": "National ID must be 14 digits",
        "auth.login_success": "Logged in successfully",
        "auth.login_failed": "Login failed",
        "auth.session_expired": "Your session has expired. Please log in again.",
        "consent.approved": "Consent approved",
        "consent.denied": "Consent denied",
        "consent.revoked": "Consent revoked",
        "error.network": "Unable to reach the server. Check your connection.",
    },
    "ar": {
        "action.retry": "إعادة المحاولة",
        "action.retake_selfie": "إعادة التقاط الصورة",
        "action.continue": "متابعة",
        "action.cancel": "إلغاء",
        "kyc.title": "التحقق من الهوية",
        "kyc.reading_id": "جاري قراءة بيانات بطاقة الهوية...",
        "kyc.matching_face": "جاري التحقق من مطابقة الوجه...",
        "kyc.creating_account": "جاري إنشاء حسابك...",
        "kyc.issuing_card": "جاري إصدار بطاقة التأمين الصحي...",
        "kyc.completed": "تم التحقق من الهوية بنجاح",
        "kyc.face_mismatch.title": "تحذير",
        "kyc.face_mismatch.message": "لم نتمكن من التحقق من مطابقة الوجه. هل تريد المتابعة؟",
        "kyc.verification_failed.title": "خطأ في التحقق",
        "kyc.verification_failed.message": "حدث خطأ أثناء معالجة بياناتك",
        "kyc.registration_failed.title": "خطأ في التسجيل",
        "kyc.registration_failed.message": "حدث خطأ أثناء إنشاء حسابك",
        "auth.otp_sent": "تم إرسال رمز التحقق إلى {phone}",
        "auth.resend_wait": "يمكنك طلب رمز جديد بعد {seconds} ثانية",
        "auth.invalid_phone": "يرجى إدخال رقم هاتف صحيح",
        "auth.invalid_otp": "يرجى إدخال الرمز المكون من {length} أرقام",
        "auth.invalid_national_id": "يجب أن يتكون الرقم القومي من 14 رقماً",
        "auth.login_success": "تم تسجيل الدخول بنجاح",
        "auth.login_failed": "فشل تسجيل الدخول",
        "auth.session_expired": "انتهت صلاحية الجلسة. يرجى تسجيل الدخول مرة أخرى.",
        "consent.approved": "تمت الموافقة على الطلب",
        "consent.denied": "تم رفض الطلب",
        "consent.revoked": "تم إلغاء الموافقة",
        "error.network": "تعذر الوصول إلى الخادم. تحقق من اتصالك.",
    },
}


def resolve_language(lang: str | None) -> str:
    """Reduce ``ar-EG`` style tags to a supported language."""
    if not lang:
        return DEFAULT_LANGUAGE
    base = lang.split("-")[0].split("_")[0].lower()
    return base if base in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def translate(key: str, lang: str | None = None, **params: Any) -> str:
    """Look up ``key`` in ``lang``, falling back to English, then the key."""
    catalog = MESSAGES[resolve_language(lang)]
    template = catalog.get(key) or MESSAGES[DEFAULT_LANGUAGE].get(key)
    if template is None:
        logger.debug(f"Missing translation for {key}")
        return key
    try:
        return template.format(**params)
    except KeyError:
        return template


@dataclass
class AlertAction:
    label: str
    action: str


@dataclass
class Alert:
    """A user-facing alert with the actions the user can pick."""

    title: str
    message: str
    actions: list[AlertAction] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "message": self.message,
            "actions": [{"label": a.label, "action": a.action} for a in self.actions],
        }

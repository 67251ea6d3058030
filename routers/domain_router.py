"""
Domain Router - sign-up email domain verification
"""

import logging
from fastapi import APIRouter, Request, Depends

from models.domain_verification import DomainVerificationRequest
from services.domain_verification_service import DomainVerificationService, InvalidDomainError
from utils.rate_limit import FixedWindowRateLimiter, create_email_verify_limiter, get_client_ip
from utils.responses import success_response, error_response

logger = logging.getLogger(__name__)

domain_router = APIRouter(prefix="/functions/v1", tags=["email-verification"])

# Process-wide limiter; counters live in Redis when REDIS_URL is configured
email_verify_limiter = create_email_verify_limiter()


def get_rate_limiter() -> FixedWindowRateLimiter:
    return email_verify_limiter


def get_domain_verification_service() -> DomainVerificationService:
    return DomainVerificationService()


def get_rate_limit_key(request: Request) -> str:
    return f"email-verify:{get_client_ip(request)}"


@domain_router.post("/verify-email-domain")
async def verify_email_domain(
    request: Request,
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    service: DomainVerificationService = Depends(get_domain_verification_service),
):
    """
    Check whether an email domain can receive mail.

    Rate limited per client IP. Every response carries the X-RateLimit-*
    headers; throttled requests also get Retry-After.
    """
    decision = limiter.check_rate_limit(get_rate_limit_key(request))

    if not decision.allowed:
        headers = decision.headers(limiter.limit)
        headers["Retry-After"] = str(decision.retry_after())
        logger.warning(f"Email verification rate limit exceeded for {get_client_ip(request)}")
        return error_response(
            "Rate limit exceeded. Please try again later.",
            status=429,
            headers=headers,
            isValid=False,
        )

    headers = decision.headers(limiter.limit)

    try:
        try:
            body = DomainVerificationRequest.model_validate(await request.json())
        except ValueError:
            body = DomainVerificationRequest()

        if not body.domain or not isinstance(body.domain, str):
            return error_response("Domain is required", status=400, headers=headers, isValid=False)

        result = await service.verify(body.domain)
    except InvalidDomainError:
        return error_response("Invalid domain format", status=400, headers=headers, isValid=False)
    except Exception as e:
        logger.error(f"Domain verification failed: {e}", exc_info=True)
        return error_response("Failed to verify domain", status=500, headers=headers, isValid=False)

    return success_response(result.to_dict(), headers=headers)

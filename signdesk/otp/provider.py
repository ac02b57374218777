### signdesk/otp/provider.py

# Standard library imports
import hashlib
from typing import Optional

# Third party imports
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

# Local imports
from signdesk.core.config import settings
from signdesk.core.exceptions import UpstreamFailureException, VerificationFailedException
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)


def otp_reference_id(purpose: str, envelope_slug: Optional[str], signer_id: Optional[int]) -> str:
    """
    Reference shared by the send and verify calls of one challenge,
    scoped to (purpose, envelope, signer).
    """
    raw = f"{purpose}:{envelope_slug or 'none'}:{signer_id or 'none'}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


class PinpointOTPProvider:
    """
    SMS one-time passwords through the Amazon Pinpoint OTP API.
    Pinpoint generates, delivers and expires the code.
    """
    def __init__(self, client=None):
        timeout = settings.otp_provider_timeout_seconds
        self.client = client or boto3.client(
            'pinpoint',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
            config=Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={'max_attempts': 1},
            ),
        )
        self.application_id = settings.aws_pinpoint_application_id
        self.origination_number = settings.aws_pinpoint_origination_number

    def send(self, phone_number: str, reference_id: str) -> None:
        """
        Ask Pinpoint to text a fresh code

        Args:
            phone_number: Canonical E.164 number
            reference_id: Challenge reference, repeated on verification

        Raises:
            UpstreamFailureException: on any provider error or timeout
        """
        params = {
            'BrandName': settings.otp_brand_name,
            'Channel': 'SMS',
            'CodeLength': settings.otp_code_length,
            'DestinationIdentity': phone_number,
            'ReferenceId': reference_id,
            'ValidityPeriod': settings.otp_validity_minutes,
            'AllowedAttempts': 3,
        }
        if self.origination_number:
            params['OriginationIdentity'] = self.origination_number
        try:
            response = self.client.send_otp_message(
                ApplicationId=self.application_id,
                SendOTPMessageRequestParameters=params,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to send verification code", reference_id=reference_id, error=str(e))
            raise UpstreamFailureException("Failed to send verification code") from e

        status_code = response.get('MessageResponse', {}).get('Result', {}) \
            .get(phone_number, {}).get('StatusCode')
        if status_code is not None and status_code >= 400:
            logger.error("Verification code rejected by provider", reference_id=reference_id, status_code=status_code)
            raise UpstreamFailureException("Failed to send verification code")
        logger.info("Verification code sent", reference_id=reference_id)

    def check(self, phone_number: str, code: str, reference_id: str) -> bool:
        """
        Verify a code against the challenge

        Returns:
            bool: True if the code is valid

        Raises:
            VerificationFailedException: on any provider error or timeout
        """
        try:
            response = self.client.verify_otp_message(
                ApplicationId=self.application_id,
                VerifyOTPMessageRequestParameters={
                    'DestinationIdentity': phone_number,
                    'Otp': code,
                    'ReferenceId': reference_id,
                },
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Verification check failed", reference_id=reference_id, error=str(e))
            raise VerificationFailedException() from e
        return bool(response.get('VerificationResponse', {}).get('Valid'))


_provider: Optional[PinpointOTPProvider] = None


def get_otp_provider() -> PinpointOTPProvider:
    """FastAPI dependency, overridden in tests"""
    global _provider
    if _provider is None:
        _provider = PinpointOTPProvider()
    return _provider

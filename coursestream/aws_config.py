"""
AWS Configuration Helper
Loads deployment parameters from SSM Parameter Store
"""

import logging
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class AWSConfig:
    """Centralized AWS configuration management"""

    def __init__(self, region: str = 'ap-southeast-2', ssm_client=None):
        self.region = region
        self.ssm_client = ssm_client or boto3.client('ssm', region_name=region)

    def get_ssm_parameter(self, parameter_name: str, default_value: Optional[str] = None) -> Optional[str]:
        """Get parameter from SSM Parameter Store"""
        try:
            response = self.ssm_client.get_parameter(
                Name=parameter_name,
                WithDecryption=True
            )
            return response['Parameter']['Value']
        except ClientError as e:
            if e.response['Error']['Code'] == 'ParameterNotFound':
                logger.warning("⚠️  SSM parameter %s not found, using default: %s", parameter_name, default_value)
            else:
                logger.error("❌ Error getting SSM parameter %s: %s", parameter_name, e)
            return default_value

    def load_configuration(self, settings) -> Dict[str, Any]:
        """Load the parameters that vary per deployment"""
        prefix = settings.ssm_prefix.rstrip('/')
        return {
            's3_bucket': self.get_ssm_parameter(f'{prefix}/s3-bucket', settings.s3_bucket),
            'dynamodb_table': self.get_ssm_parameter(f'{prefix}/dynamodb-table', settings.dynamodb_table),
            'cdn_base_url': self.get_ssm_parameter(f'{prefix}/cdn-base-url', settings.cdn_base_url),
        }

    def apply_to(self, settings):
        """Override settings in place with the SSM values"""
        config = self.load_configuration(settings)
        for key, value in config.items():
            if value is not None:
                setattr(settings, key, value.rstrip('/') if key == 'cdn_base_url' else value)
        logger.info("✅ AWS configuration loaded successfully")
        return settings

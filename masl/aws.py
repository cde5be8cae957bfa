# -*- coding: utf-8 -*-
#
# Credits: Portions of this code were copied/modified from
# https://github.com/ThoughtWorksInc/aws_role_credentials
#
# Copyright (c) 2015, Peter Gillard-Moss
# All rights reserved.

# Permission to use, copy, modify, and/or distribute this software for any
# purpose with or without fee is hereby granted, provided that the above
# copyright notice and this permission notice appear in all copies.

# THE SOFTWARE IS PROVIDED "AS IS" AND THE AUTHOR DISCLAIMS ALL WARRANTIES
# WITH REGARD TO THIS SOFTWARE INCLUDING ALL IMPLIED WARRANTIES OF
# MERCHANTABILITY AND FITNESS. IN NO EVENT SHALL THE AUTHOR BE LIABLE FOR
# ANY SPECIAL, DIRECT, INDIRECT, OR CONSEQUENTIAL DAMAGES OR ANY DAMAGES
# WHATSOEVER RESULTING FROM LOSS OF USE, DATA OR PROFITS, WHETHER IN AN
# ACTION OF CONTRACT, NEGLIGENCE OR OTHER TORTIOUS ACTION, ARISING OUT OF
# OR IN CONNECTION WITH THE USE OR PERFORMANCE OF THIS SOFTWARE.
"""
AWS Session and Credential classes; how we record the creds and how we talk
to AWS to get them.
"""
import configparser
import logging
import os
import tempfile

import boto3
import botocore
from botocore.config import Config as BotoConfig

from masl.aws_saml import SamlAssertion

LOG = logging.getLogger(__name__)

DEFAULT_CREDENTIALS = '~/.aws/credentials'

LEGACY_TOKEN_KEY = 'aws_security_token'

# Seconds before the STS call is abandoned
TIMEOUT = 10


class TemporaryCredentials(object):
    """A set of temporary credentials handed out by STS."""

    def __init__(self, access_key_id, secret_access_key, session_token,
                 expiration, assumed_role_arn=None):
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.session_token = session_token
        self.expiration = expiration
        self.assumed_role_arn = assumed_role_arn

    @classmethod
    def from_response(cls, response):
        """Build from an STS AssumeRoleWithSAML response dict."""
        creds = response['Credentials']
        return cls(creds['AccessKeyId'],
                   creds['SecretAccessKey'],
                   creds['SessionToken'],
                   creds['Expiration'],
                   response.get('AssumedRoleUser', {}).get('Arn'))


class Credentials(object):
    """Simple AWS Credentials Profile representation.

    This object reads in an Amazon ~/.aws/credentials file, and then allows you
    to write out credentials into different Profile sections. Sections other
    than the one being written are left as they are.
    """

    def __init__(self, filename=None):
        self.filename = filename or self.locate()

    @staticmethod
    def locate():
        """Where the shared credentials file lives.

        AWS_SHARED_CREDENTIALS_FILE wins, same as for the AWS CLI and SDKs.
        """
        return os.path.expanduser(os.environ.get(
            'AWS_SHARED_CREDENTIALS_FILE', DEFAULT_CREDENTIALS))

    def _ensure_exists(self):
        """Create the file, and its folder, readable only by the owner."""
        cred_dir = os.path.dirname(os.path.abspath(self.filename))
        if not os.path.exists(cred_dir):
            LOG.info('Creating missing AWS Credentials dir {dir} 📁'.format(
                dir=cred_dir))
            os.makedirs(cred_dir, 0o700)

        if not os.path.exists(self.filename):
            LOG.debug('Creating empty {}'.format(self.filename))
            fd = os.open(self.filename, os.O_WRONLY | os.O_CREAT, 0o600)
            os.close(fd)

    def _load(self):
        """Read the file permissively; a missing file is an empty one."""
        config = configparser.RawConfigParser(strict=False)
        # Keep key case as-is in every section
        config.optionxform = str
        try:
            with open(self.filename, 'r') as configfile:
                config.read_file(configfile)
        except IOError:
            LOG.debug("Unable to open {}".format(self.filename))
        return config

    def _add_profile(self, name, profile, remove=()):
        """Do all the heavy lifting to write the profile out to disk."""
        self._ensure_exists()
        config = self._load()

        if not config.has_section(name):
            config.add_section(name)

        for key, value in profile.items():
            config.set(name, key, value)
        for key in remove:
            config.remove_option(name, key)

        self._replace(config)

    def _replace(self, config):
        """Write the whole file to a temp file next to it, then swap it in.

        The existing file is untouched until the new one is fully written.
        """
        target = os.path.realpath(self.filename)
        fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(target),
                                        prefix='.credentials-')
        try:
            with os.fdopen(fd, 'w') as configfile:
                config.write(configfile)
                configfile.flush()
                os.fsync(configfile.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, target)
        except BaseException:
            os.unlink(tmp_path)
            raise

    def add_profile(self, name, creds, legacy_token=False):
        """Write out a set of AWS Credentials to disk.

        args:
            name: The profile name to write to
            creds: TemporaryCredentials
            legacy_token: Also write the session token as aws_security_token;
                when off any existing aws_security_token is removed
        """
        name = str(name)
        profile = {'aws_access_key_id': str(creds.access_key_id),
                   'aws_secret_access_key': str(creds.secret_access_key),
                   'aws_session_token': str(creds.session_token)}
        remove = ()
        if legacy_token:
            profile[LEGACY_TOKEN_KEY] = str(creds.session_token)
        else:
            remove = (LEGACY_TOKEN_KEY,)

        self._add_profile(name, profile, remove)

        LOG.info('Wrote profile "{name}" to {file} 💾'.format(
            name=name, file=self.filename))


class Session(object):
    """Amazon Federated Session Generator.

    This class is used to contact Amazon with a specific SAML Assertion and
    get back a set of temporary Federated credentials.

    This object is meant to be used once -- as SAML Assertions are one-time-use
    objects. Nothing is retried: a second try with the same assertion would
    fail the same way.
    """

    def __init__(self, assertion, region='us-east-1', session_duration=3600):
        boto_logger = logging.getLogger('botocore')
        boto_logger.setLevel(logging.WARNING)

        self.region = region
        # AssumeRoleWithSAML is authenticated by the assertion itself, so
        # the client needs no local AWS credentials.
        self.sts = boto3.client(
            'sts',
            region_name=self.region,
            config=BotoConfig(signature_version=botocore.UNSIGNED,
                              connect_timeout=TIMEOUT,
                              read_timeout=TIMEOUT,
                              retries={'total_max_attempts': 1}))
        self.assertion = SamlAssertion(assertion)
        self.duration = session_duration

        # Populated by self.assume_role()
        self.creds = None

    def assume_role(self, role):
        """Use the SAML Assertion to actually get the credentials.

        Args:
            role: aws_saml.Role to assume

        Returns: TemporaryCredentials
        """
        LOG.info('Assuming role: {}'.format(role.role_arn))

        response = self.sts.assume_role_with_saml(
            RoleArn=role.role_arn,
            PrincipalArn=role.principal_arn,
            SAMLAssertion=self.assertion.encode(),
            DurationSeconds=self.duration)

        self.creds = TemporaryCredentials.from_response(response)
        LOG.info('Session expires at {time} ⏳'.format(
            time=self.creds.expiration))
        return self.creds

# -*- coding: utf-8 -*-

# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# Copyright 2018 Nextdoor.com, Inc
# Copyright 2018 Nathan V
"""This contains all of the OneLogin SAML specific code."""
import logging

from masl import onelogin


LOG = logging.getLogger(__name__)

ASSERTION_PATH = 'api/1/saml_assertion'
VERIFY_PATH = 'api/1/saml_assertion/verify_factor'


class MFADevice(object):
    """A registered MFA device as offered by OneLogin."""

    def __init__(self, device_id, device_type):
        self.device_id = device_id
        self.device_type = device_type

    def __eq__(self, other):
        return (isinstance(other, MFADevice) and
                (self.device_id, self.device_type) ==
                (other.device_id, other.device_type))

    def __repr__(self):
        return 'MFADevice({!r}, {!r})'.format(self.device_id,
                                              self.device_type)


class Completed(object):
    """No MFA needed; OneLogin handed over the assertion straight away."""

    mfa_required = False

    def __init__(self, assertion):
        self.assertion = assertion


class MFARequired(object):
    """OneLogin wants a second factor before it hands over the assertion."""

    mfa_required = True

    def __init__(self, state_token, devices):
        self.state_token = state_token
        self.devices = devices


class OneLoginSaml(onelogin.OneLogin):
    """Handle the SAML assertion part of talking to OneLogin."""

    @staticmethod
    def completed(ret):
        """Decode a response that carries the assertion itself."""
        assertion = ret.get('data')
        if not assertion or not isinstance(assertion, str):
            raise onelogin.InvalidResponse('No SAML assertion in response')
        return Completed(assertion)

    @staticmethod
    def mfa_required(ret):
        """Decode a response that carries an MFA challenge.

        Args:
            ret: Dict (JSON) response from the assertion call

        Returns:
            MFARequired with the state token and devices in OneLogin's order
        """
        try:
            challenge = ret['data'][0]
            state_token = challenge['state_token']
            devices = [MFADevice(int(device['device_id']),
                                 device['device_type'])
                       for device in challenge['devices']]
        except (KeyError, IndexError, TypeError, ValueError):
            raise onelogin.InvalidResponse(
                'Malformed MFA challenge: {}'.format(
                    onelogin.OneLogin._masked(ret)))

        if not devices:
            LOG.fatal('MFA required but no MFA devices are registered')
            raise onelogin.InvalidResponse('No MFA devices in MFA challenge')

        LOG.debug('MFA devices offered: {}'.format(devices))
        return MFARequired(state_token, devices)

    def saml_assertion(self):
        """Submit the user's credentials and get the assertion or a challenge.

        The response is looked at in two steps: first only the status block,
        and then based on its message the payload is decoded as either the
        assertion itself or an MFA challenge.

        Returns:
            Completed or MFARequired
        """
        if self.api_token is None:
            self.generate_token()

        data = {'username_or_email': self.username,
                'password': self.password,
                'app_id': self.appid,
                'subdomain': self.subdomain}
        ret = self._request(ASSERTION_PATH, data, self.bearer)

        code, message = self.status(ret)
        LOG.info('OneLogin: {}'.format(message))

        if code != 200:
            raise onelogin.AuthError(message, code)

        if message.lower() == 'success':
            LOG.debug('MFA not required')
            return self.completed(ret)

        return self.mfa_required(ret)

    def verify_factor(self, state_token, device_id, otp):
        """Verify an OTP against one of the user's MFA devices.

        Args:
            state_token: State token from the MFARequired challenge
            device_id: Int ID of the MFA device the OTP came from
            otp: The user-supplied one-time password

        Returns:
            String base64 encoded SAML assertion
        """
        data = {'app_id': self.appid,
                'otp_token': otp.strip(),
                'device_id': str(device_id),
                'state_token': state_token}
        ret = self._request(VERIFY_PATH, data, self.bearer)

        code, message = self.status(ret)
        if code != 200:
            LOG.error('MFA verification failed: {}'.format(message))
            raise onelogin.AuthError(message, code)

        return self.completed(ret).assertion

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
"""This contains the OneLogin API client code."""
import logging

import requests

from masl.metadata import __version__

LOG = logging.getLogger(__name__)

TOKEN_PATH = 'auth/oauth2/token'

# Seconds before any single call to OneLogin is abandoned
TIMEOUT = 10

# Fields that never get written to the log
SECRET_FIELDS = ('password', 'otp_token', 'client_secret', 'access_token',
                 'refresh_token', 'state_token')

MASK = '*****'


class BaseException(Exception):
    """Base OneLogin Exception."""


class EmptyInput(BaseException):
    """Invalid Input - Empty String Detected."""


class AuthError(BaseException):
    """OneLogin refused the request; carries the message it sent back."""

    def __init__(self, message, code=None):
        self.message = message
        self.code = code
        super(AuthError, self).__init__(message)


class InvalidResponse(BaseException):
    """OneLogin sent back something we could not make sense of."""


class OneLogin(object):
    """Base OneLogin API client.

    This handles connecting to the OneLogin API and generating the API access
    token that every later call is authorized with. No SAML specific logic is
    here; see OneLoginSaml for the assertion exchange.

    The client owns its requests.Session and its API token, so one instance
    is one login attempt.
    """

    def __init__(self, base_url, client_id, client_secret, username, password,
                 appid=None, subdomain=None):
        # Validate the inputs are reasonably sane
        for input_value in (base_url, client_id, client_secret, username,
                            password):
            if input_value == '' or input_value is None:
                raise EmptyInput()

        if not base_url.endswith('/'):
            base_url = '{}/'.format(base_url)
        self.base_url = base_url
        LOG.debug('Base URL Set to: {url}'.format(url=self.base_url))

        self.client_id = client_id
        self.client_secret = client_secret
        self.username = username
        self.password = password
        self.appid = appid
        self.subdomain = subdomain
        self.session = requests.Session()
        self.api_token = None

    @staticmethod
    def _masked(data):
        """Return a copy of a request or response body that is safe to log.

        Secret fields are masked at any depth, and so is a string `data`
        payload, which is how OneLogin returns the SAML assertion.
        """
        if isinstance(data, list):
            return [OneLogin._masked(item) for item in data]
        if not isinstance(data, dict):
            return data
        masked = {}
        for key, value in data.items():
            if key in SECRET_FIELDS or (key == 'data' and
                                        isinstance(value, str)):
                masked[key] = MASK
            else:
                masked[key] = OneLogin._masked(value)
        return masked

    def _request(self, path, data, auth):
        """Make OneLogin API calls.

        OneLogin reports most failures (bad password, bad OTP, bad client
        credentials) as a JSON body with a status block, often with a 4xx
        HTTP code. So the body is parsed regardless of the HTTP code, and the
        HTTP code only matters when the body isn't JSON.

        Args:
            path: The path at the base url to call
            data: Dict to send as the JSON body
            auth: Value for the Authorization header

        Returns:
            The response in dict form.
        """
        url = '{base}{path}'.format(base=self.base_url, path=path)
        headers = {'Accept': 'application/json',
                   'Content-Type': 'application/json',
                   'Authorization': auth,
                   'User-Agent': 'masl/{}'.format(__version__)}

        LOG.debug('POST {} {}'.format(url, self._masked(data)))
        resp = self.session.post(url=url, headers=headers, json=data,
                                 allow_redirects=False, timeout=TIMEOUT)

        try:
            resp_obj = resp.json()
        except ValueError:
            LOG.error('Non-JSON response from {} ({})'.format(
                url, resp.status_code))
            resp.raise_for_status()
            raise InvalidResponse(
                'Response from {} was not JSON'.format(url))

        if not isinstance(resp_obj, dict):
            raise InvalidResponse(
                'Unexpected response from {}: {}'.format(
                    url, self._masked(resp_obj)))

        LOG.debug('Response {}: {}'.format(resp.status_code,
                                           self._masked(resp_obj)))
        return resp_obj

    @staticmethod
    def status(resp_obj):
        """Pull only the status block out of a OneLogin response.

        Args:
            resp_obj: Dict (JSON) of a OneLogin API response

        Returns:
            Tuple of the status code (int) and status message (str)
        """
        try:
            status = resp_obj['status']
            code = int(status['code'])
        except (KeyError, TypeError, ValueError):
            raise InvalidResponse(
                'Missing status in response: {}'.format(
                    OneLogin._masked(resp_obj)))
        return code, str(status.get('message', ''))

    def generate_token(self):
        """Generate a OneLogin API access token.

        Uses the client credentials grant; the token is kept on the client
        for the SAML assertion calls that follow.

        Returns:
            String access token
        """
        auth = 'client_id:{},client_secret:{}'.format(self.client_id,
                                                     self.client_secret)
        ret = self._request(TOKEN_PATH, {'grant_type': 'client_credentials'},
                            auth)

        code, message = self.status(ret)
        if code != 200 or ret['status'].get('error'):
            LOG.error('OneLogin API token request failed: {}'.format(message))
            raise AuthError(message, code)

        try:
            self.api_token = ret['data'][0]['access_token']
        except (KeyError, IndexError, TypeError):
            raise InvalidResponse(
                'No access token in response: {}'.format(message))

        LOG.debug('OneLogin API token generated')
        return self.api_token

    @property
    def bearer(self):
        """Authorization header value for calls made with the API token."""
        return 'bearer:{}'.format(self.api_token)

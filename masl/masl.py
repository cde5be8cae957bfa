#!/usr/bin/env python
# -*- coding: UTF-8 -*-

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
"""This module contains the primary logic of the tool."""
import getpass
import logging
import os
import sys
import traceback

import botocore.exceptions
import keyring
import requests

from masl import aws, aws_saml, onelogin, onelogin_saml
from masl.config import Config
from masl.metadata import __desc__, __version__


LOG = logging.getLogger(__name__)


class InvalidSelection(Exception):
    """The user picked something that isn't on the menu."""


class Masl:
    """Main class for the tool."""

    def __init__(self, argv):
        self.onelogin_client = None
        self.log = LOG
        self.log.info('{} 🔐 v{}'.format(__desc__, __version__))
        self.config = Config(argv)
        try:
            self.config.get_config()
        except ValueError as err:
            self.log.fatal(err)
            sys.exit(1)
        if self.config.debug:
            logging.getLogger().setLevel(logging.DEBUG)
            self.log.setLevel(logging.DEBUG)

    def main(self):
        """Execute primary logic path."""
        try:
            account_filter = self.config.account_filter()

            # get user password
            password = self.user_password()

            # Generate our OneLoginSaml client and get the assertion
            self.init_onelogin(password)
            assertion = self.authenticate()

            roles = aws_saml.decode_roles(assertion,
                                          self.config.directory(),
                                          account_filter,
                                          self.config.role)
            if not roles:
                self.log.info("No masl for you! You don't have permissions "
                              "to any matching account.")
                return None

            role = self.select_role(roles)
            creds = self.assume_role(assertion, role)
            self.write_credentials(creds, role)
            self.wrap_up(creds, role)

        except onelogin.EmptyInput:
            self.log.fatal('Cannot enter a blank string for any input')
            sys.exit(1)

        except onelogin.AuthError as err:
            self.log.fatal('OneLogin: {}'.format(err))
            if self.config.password_cache:
                msg = (
                    'Password cache is in use; use option -R to reset the '
                    'cached password with a new value'
                )
                self.log.warning(msg)
            sys.exit(1)

        except InvalidSelection as err:
            self.log.fatal(err)
            sys.exit(1)

        except (onelogin.InvalidResponse, aws_saml.InvalidSaml) as err:
            self.log.fatal('Unusable response: {}'.format(err))
            self.log.debug(traceback.format_exc())
            sys.exit(2)

        except requests.exceptions.RequestException as err:
            self.log.fatal('Error talking to OneLogin: {}'.format(err))
            sys.exit(3)

        except (botocore.exceptions.BotoCoreError,
                botocore.exceptions.ClientError) as err:
            self.log.fatal('AWS refused the assertion: {}'.format(err))
            sys.exit(4)

        except OSError as err:
            self.log.fatal('Unable to write AWS credentials: {}'.format(err))
            sys.exit(6)

        except KeyboardInterrupt:
            # Allow users to exit cleanly at any time.
            print('')
            self.log.info('Exiting after keyboard interrupt. 🛑')
            sys.exit(1)

        except Exception as err:
            msg = '😬 Unhandled exception: {}'.format(err)
            self.log.fatal(msg)
            self.log.debug(traceback.format_exc())
            sys.exit(5)

    @staticmethod
    def user_input(text):
        """Wrap input() to simplify testing."""
        return input(text).strip()

    def user_password(self):
        """Wrap getpass to simplify testing."""
        password = None
        prompt = 'OneLogin Password: '
        if self.config.password_cache:
            self.log.debug('Password cache enabled')
            try:
                keyring.get_keyring()
                password = keyring.get_password('masl', self.config.username)
            except keyring.errors.InitError:
                msg = 'Password cache enabled but no keyring available.'
                self.log.warning(msg)
                password = getpass.getpass(prompt)

            if self.config.password_reset or password is None:
                self.log.debug('Password not in cache or reset requested')
                password = getpass.getpass(prompt)
                keyring.set_password('masl', self.config.username, password)
        else:
            password = getpass.getpass(prompt)
        return password

    @staticmethod
    def generate_template(data, header_map):
        """ Generates a string template for printing a table using the data and
        header to define the column names and widths

        Args:
        data: List of dicts; the data that will go in the table
        header_map: List of dicts with the header name to key map

        Returns: String template used for printing a padded table
        """
        columns = []
        for col in header_map:
            col_key = list(col.keys())[0]
            col_wid = max([len(str(row[col_key])) for row in data] +
                          [len(col[col_key])]) + 2
            columns.append("{{{}:{}}}".format(col_key, col_wid))
        return ''.join(columns)

    @staticmethod
    def generate_header(header_map):
        """ Generates a table header

        Args:
        header_map: List of dicts with the header name to key map

        Returns: Dict mapping data keys to column headers
        """
        header_dict = {}
        for col in header_map:
            header_dict.update(col)
        return header_dict

    @staticmethod
    def print_selector_table(template, header_map, data, numbers=None):
        """ Prints out a formatted table of data with headers and a number
        per row so that the user can be prompted to select a row as their
        response.

        Args:
        template: String template used to print each row
        header_map: List of dicts containing the data key to column title map
        data: List of dicts where each dict is a row in the table
        numbers: List of the number shown for each row; 1-based by default
        """
        numbers = numbers or list(range(1, len(data) + 1))
        selector_width = len(str(max(numbers))) + 2
        pad = " " * (selector_width + 1)
        header_dict = Masl.generate_header(header_map)
        print("\n{}{}".format(pad, template.format(**header_dict)))
        for number, item in zip(numbers, data):
            sel = "[{}]".format(number).ljust(selector_width)
            print("{} {}".format(sel, str(template.format(**item))))

    def selector_menu(self, data, header_map, numbers=None):
        """ Presents a menu/table to the user from which they can make a
        selection using the number of their choice

        Args:
        data: List of dicts where each dict is a row in the table
        header_map: List of dicts containing the data key to column title map
        numbers: List of the number shown for each row; 1-based by default

        Returns: Int as the list index for the row the user chose
        """
        numbers = numbers or list(range(1, len(data) + 1))
        template = self.generate_template(data, header_map)
        self.print_selector_table(template, header_map, data, numbers)
        answer = self.user_input("Selection: ")
        print('')
        try:
            selection = int(answer)
        except ValueError:
            raise InvalidSelection("'{}' is not a number".format(answer))
        if selection not in numbers:
            raise InvalidSelection("{} is not one of {}".format(
                selection, ', '.join(str(n) for n in numbers)))
        return numbers.index(selection)

    def init_onelogin(self, password):
        """Initialize the OneLogin client."""
        self.onelogin_client = onelogin_saml.OneLoginSaml(
            self.config.base_url,
            self.config.client_id,
            self.config.client_secret,
            self.config.username,
            password,
            appid=self.config.appid,
            subdomain=self.config.subdomain)

    def authenticate(self):
        """Log in to OneLogin, verifying an MFA device if it asks for one.

        Returns: String base64 encoded SAML assertion
        """
        self.log.debug('Attempting to authenticate to OneLogin')
        self.onelogin_client.generate_token()
        state = self.onelogin_client.saml_assertion()
        if not state.mfa_required:
            return state.assertion

        self.log.warning('MFA Requirement Detected')
        device = self.select_mfa_device(state.devices)
        otp = self.user_input(self.otp_prompt(device))
        return self.onelogin_client.verify_factor(state.state_token,
                                                  device.device_id,
                                                  otp)

    def select_mfa_device(self, devices):
        """Pick the MFA device to verify with.

        A single device or the configured default is used without asking;
        otherwise the user picks from a list.
        """
        if len(devices) == 1:
            return devices[0]

        default = self.config.default_mfa_device
        if default:
            for device in devices:
                if device.device_type.lower() == default.lower():
                    self.log.info('Using default MFA device {}'.format(
                        device.device_type))
                    return device
            self.log.warning(
                'No MFA device matches the default [{}]'.format(default))

        self.log.warning('Multiple MFA devices found; please select one')
        rows = [{'device_type': device.device_type} for device in devices]
        header = [{'device_type': 'MFA Device'}]
        return devices[self.selector_menu(rows, header)]

    @staticmethod
    def otp_prompt(device):
        """The prompt text for the one-time password of a device."""
        if 'yubikey' in device.device_type.lower():
            return 'Enter your YubiKey security code: '
        return 'Enter your {} one-time password: '.format(device.device_type)

    def select_role(self, roles):
        """If there's more than one role available present the user with a
        list to pick from
        """
        if len(roles) == 1:
            return roles[0]

        self.log.warning('Multiple AWS roles found; please select one')
        rows = [{'account_id': role.account_id,
                 'role_name': role.role_name,
                 'account_name': role.account_name} for role in roles]
        header = [{'account_id': 'Account'}, {'role_name': 'Role'},
                  {'account_name': 'Name'}]
        numbers = [role.ordinal or number
                   for number, role in enumerate(roles, 1)]
        return roles[self.selector_menu(rows, header, numbers)]

    def assume_role(self, assertion, role):
        """Trade the assertion for credentials of the chosen role."""
        self.log.info("Starting AWS session for {}".format(
            self.config.region))
        session = aws.Session(assertion, region=self.config.region,
                              session_duration=self.config.duration)
        return session.assume_role(role)

    def write_credentials(self, creds, role):
        """Write the credentials to the configured profile, and to a profile
        named after the account when the account is a known one.
        """
        writer = aws.Credentials()
        profiles = [self.config.profile]
        if role.account_name not in (aws_saml.UNKNOWN_ACCOUNT_NAME,
                                     self.config.profile):
            profiles.append(role.account_name)

        for profile in profiles:
            writer.add_profile(profile, creds, self.config.legacy_token)
        return profiles

    def wrap_up(self, creds, role):
        """ Report on the session we got and check AWS_PROFILE points at it

        Args:
        creds: aws.TemporaryCredentials
        role: aws_saml.Role that was assumed
        """
        self.log.info('Assumed User: {}'.format(creds.assumed_role_arn))
        self.log.info('In account: {} [{}]'.format(role.account_id,
                                                   role.account_name))
        self.log.info('Token will expire on: {}'.format(creds.expiration))

        aws_profile = os.environ.get('AWS_PROFILE', 'default')
        if aws_profile != self.config.profile:
            msg = (
                "Your AWS credentials were stored under profile '{}' but "
                "your AWS_PROFILE is set to '{}'!").format(
                    self.config.profile, aws_profile)
            self.log.warning(msg)
        else:
            self.log.info('All done! 👍')

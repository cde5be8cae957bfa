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
"""
Settings for masl: command line arguments merged with the YAML config
file, plus the account directory and environments read from it.
"""
import argparse
import getpass
import logging
import os

import yaml

from masl.metadata import __version__

LOG = logging.getLogger(__name__)

DEFAULT_CONFIG = '~/.config/masl.yml'
DEFAULT_PROFILE = 'masl'
DEFAULT_REGION = 'us-east-1'
DEFAULT_DURATION = 3600

REQUIRED = ('base_url', 'client_id', 'client_secret', 'appid', 'subdomain')


class Account(object):
    """One entry of the configured account directory."""

    def __init__(self, account_id, name, environment_independent=False):
        self.id = str(account_id)
        self.name = name
        self.environment_independent = bool(environment_independent)

    @classmethod
    def from_dict(cls, data):
        """Build an Account from a config file entry."""
        try:
            return cls(data['id'], data['name'],
                       data.get('environment_independent', False))
        except (KeyError, TypeError, AttributeError):
            raise ValueError(
                "Accounts need an 'id' and a 'name'; got {}".format(data))

    def __repr__(self):
        return 'Account({}, {})'.format(self.id, self.name)


def search_accounts(accounts, account_id):
    """Look up an account ID in the account directory.

    Returns: Tuple of the account name (None if not found) and whether the
    account is environment independent
    """
    for account in accounts:
        if account.id == account_id:
            return account.name, account.environment_independent
    return None, False


class Config:
    """All masl settings, from the command line and the config file."""

    def __init__(self, argv):
        self.argv = argv
        self.config = None
        self.writepath = None
        self.base_url = None
        self.client_id = None
        self.client_secret = None
        self.appid = None
        self.subdomain = None
        self.username = None
        self.profile = None
        self.env = None
        self.account = None
        self.role = None
        self.legacy_token = None
        self.default_mfa_device = None
        self.region = None
        self.duration = None
        self.accounts = None
        self.environments = None
        self.debug = None
        self.password_cache = None
        self.password_reset = None

    def get_config(self):
        """Parse the arguments, then load or write the config file and
        validate the result.
        """
        self.parse_args()
        config_file = os.path.expanduser(DEFAULT_CONFIG)
        if self.writepath:
            self.write_config()
        elif self.config:
            self.parse_config(os.path.expanduser(self.config))
        elif os.path.isfile(config_file):
            # No filename given; use the default path
            self.parse_config(config_file)
        self.validate()

    def validate(self):
        """Check the required OneLogin settings and fill in defaults."""
        missing = [key for key in REQUIRED if not getattr(self, key)]
        if missing:
            err = ("The parameter(s) {} must be provided in the config file "
                   "or as an argument".format(', '.join(missing)))
            raise ValueError(err)

        if not self.base_url.endswith('/'):
            self.base_url = '{}/'.format(self.base_url)

        if self.duration is None:
            self.duration = DEFAULT_DURATION
        try:
            self.duration = int(self.duration)
        except (TypeError, ValueError):
            raise ValueError("The parameter duration must be a number of "
                             "seconds, not '{}'".format(self.duration))

        if self.profile is None:
            self.profile = DEFAULT_PROFILE

        if self.region is None:
            self.region = DEFAULT_REGION

        if self.username is None:
            user = getpass.getuser()
            LOG.info(
                "No username provided; defaulting to current user '{}'".format(
                    user))
            self.username = user

        # Fail on a broken account directory now rather than mid-login
        self.directory()
        self.environment_map()

    @staticmethod
    def usage_epilog():
        """Epilog string for argparse."""
        epilog = (
            '** Configuration File **\n'
            'masl reads its OneLogin API settings and the account directory\n'
            'from a YAML config file. The default location is\n'
            '\'~/.config/masl.yml\' on Linux/Mac or for Windows it is\n'
            '\'$USERPROFILE\\.config\\masl.yml\'\n'
            '\n'
            '** Account selection **\n'
            'Use --account with an account ID or a configured account name,\n'
            'or --env to only show the accounts of one environment plus the\n'
            'environment independent accounts.\n')
        return epilog

    def parse_args(self):
        """Parse argv and set every option as an attribute."""
        arg_parser = argparse.ArgumentParser(
            prog=self.argv[0],
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=self.usage_epilog(),
            description="masl v{}".format(__version__))
        # Remove the default optional arguments section that always shows up.
        # It's not necessary, and can cause confusion.
        #   https://stackoverflow.com/questions/24180527/
        #   argparse-required-arguments-listed-under-optional-arguments
        arg_parser._action_groups.pop()

        onelogin_args = arg_parser.add_argument_group('OneLogin settings')
        self.onelogin_args(onelogin_args)

        optional_args = arg_parser.add_argument_group('Optional arguments')
        self.optional_args(optional_args)

        config = arg_parser.parse_args(args=self.argv[1:])
        config_dict = vars(config)

        for key in config_dict:
            setattr(self, key, config_dict[key])

    @staticmethod
    def onelogin_args(arg_group):
        """Settings needed to talk to OneLogin; usually in the config file."""
        arg_group.add_argument('-b', '--base_url', type=str,
                               help=(
                                   'OneLogin API base URL, ie. '
                                   'https://api.eu.onelogin.com/'
                               ))
        arg_group.add_argument('--client_id', type=str,
                               help='OneLogin API client ID')
        arg_group.add_argument('--client_secret', type=str,
                               help='OneLogin API client secret')
        arg_group.add_argument('--appid', type=str,
                               help='OneLogin AWS application ID')
        arg_group.add_argument('-s', '--subdomain', type=str,
                               help='OneLogin subdomain')

    @staticmethod
    def optional_args(optional_args):
        """Login, profile and account selection options."""
        optional_args.add_argument('-u', '--username', type=str,
                                   help=(
                                       'OneLogin username or email. Will use '
                                       'the current user if not specified.'
                                   ))
        optional_args.add_argument('-p', '--profile', type=str,
                                   help=(
                                       'AWS profile name to write the '
                                       'credentials to. Defaults to masl.'
                                   ))
        optional_args.add_argument('-e', '--env', type=str,
                                   help=(
                                       'Work environment; only show the '
                                       'accounts configured for it.'
                                   ))
        optional_args.add_argument('-a', '--account', type=str,
                                   help='AWS account ID or name')
        optional_args.add_argument('-r', '--role', type=str,
                                   help='AWS role name')
        optional_args.add_argument('-l', '--legacy_token',
                                   action='store_true',
                                   help=(
                                       'Also write the legacy '
                                       'aws_security_token (for Boto support).'
                                   ),
                                   default=False)
        optional_args.add_argument('-V', '--version', action='version',
                                   version=__version__)
        optional_args.add_argument('-D', '--debug', action='store_true',
                                   help=(
                                       'Enable DEBUG logging - note, this is '
                                       'extremely verbose so be careful here!'
                                   ),
                                   default=False)
        optional_args.add_argument('-c', '--config', type=str,
                                   help='Config File path')
        optional_args.add_argument('-w', '--writepath', type=str,
                                   help=(
                                       'Full config file path to write the '
                                       'given arguments to'
                                   ))
        optional_args.add_argument('-P', '--password_cache',
                                   action='store_true', help=(
                                       'Use OS keyring to cache your password.'
                                   ),
                                   default=False)
        optional_args.add_argument('-R', '--password_reset',
                                   action='store_true', help=(
                                       'Reset your password in the cache. '
                                       'Use this to update the cached password'
                                       ' if it has changed or is incorrect.'
                                   ),
                                   default=False)
        optional_args.add_argument('-re', '--region', type=str,
                                   help='AWS region to use for the STS call.')
        optional_args.add_argument('-du', '--duration', type=int,
                                   help=(
                                       'AWS API Key duration to request in '
                                       'seconds. Defaults to 3600.'
                                   ))

    @staticmethod
    def read_yaml(filename, raise_on_error=False):
        """Load a YAML file; an empty dict if it is missing or broken, unless
        raise_on_error is set.
        """
        config = {}
        try:
            if os.path.isfile(filename):
                with open(filename, 'r') as config_file:
                    config = yaml.load(config_file, Loader=yaml.FullLoader)
                LOG.debug("YAML loaded config from {}".format(filename))
            else:
                if raise_on_error:
                    raise IOError("File not found: {}".format(filename))
        except (yaml.parser.ParserError, yaml.scanner.ScannerError):
            LOG.error('Error parsing config file; invalid YAML.')
            if raise_on_error:
                raise
        return config or {}

    def parse_config(self, filename):
        """Fill in any setting not already given as an argument from a file."""
        config = self.read_yaml(filename, raise_on_error=True)

        for key, value in config.items():
            if not hasattr(self, key):
                LOG.warning("Ignoring unknown config setting '{}'".format(key))
                continue
            if not getattr(self, key):  # Only overwrite None not args
                setattr(self, key, value)

    def write_config(self):
        """Merge the arguments into the file at --writepath and save it."""
        file_path = os.path.expanduser(self.writepath)
        config = self.read_yaml(file_path)

        args_dict = dict(vars(self))

        # Combine file data and user args with user args overwriting
        for key, value in config.items():
            setattr(self, key, value)
        for key in args_dict:
            if args_dict[key] is not None:
                setattr(self, key, args_dict[key])

        config_out = self.clean_config_for_write(dict(vars(self)))

        LOG.debug("YAML being saved: {}".format(sorted(config_out)))

        file_folder = os.path.dirname(os.path.abspath(file_path))
        if not os.path.exists(file_folder):
            LOG.debug("Creating missing config file folder : {}".format(
                file_folder))
            os.makedirs(file_folder)

        with open(file_path, 'w') as outfile:
            yaml.safe_dump(config_out, outfile, default_flow_style=False)
        # The file holds the OneLogin client secret
        os.chmod(file_path, 0o600)
        LOG.info('Config written to {}'.format(file_path))

    @staticmethod
    def clean_config_for_write(config):
        """Drop per-run options and unset values before saving."""
        ignore = ['argv', 'writepath', 'config', 'debug', 'env', 'account',
                  'password_reset', 'version']
        for var in ignore:
            config.pop(var, None)

        return {k: v for k, v in config.items() if v is not None}

    def directory(self):
        """The account directory as a list of Account."""
        return [Account.from_dict(acct) for acct in self.accounts or []]

    def environment_map(self):
        """Map of lower-cased environment name to its account IDs."""
        environments = {}
        for env in self.environments or []:
            try:
                name = env['name'].lower()
                accounts = [str(acct) for acct in env.get('accounts') or []]
            except (KeyError, TypeError, AttributeError):
                raise ValueError(
                    "Environments need a 'name' and a list of 'accounts'; "
                    "got {}".format(env))
            environments.setdefault(name, []).extend(accounts)
        return environments

    def get_account_id(self, name):
        """Return the ID of the account with the given name, or None."""
        account_id = None
        for account in self.directory():
            if account.name and account.name.lower() == name.lower():
                account_id = account.id
        return account_id

    def accounts_for_environment(self, environment):
        """Account IDs of an environment plus every environment independent
        account.
        """
        accounts = list(self.environment_map().get(environment.lower(), []))
        accounts.extend(account.id for account in self.directory()
                        if account.environment_independent)
        return accounts

    def account_filter(self):
        """Build the list of account IDs the roles are limited to.

        Returns: List of account ID strings; empty means no filtering
        """
        account_filter = []
        if self.account:
            account_id = self.get_account_id(str(self.account))
            account_filter.append(account_id or str(self.account))
        elif self.env:
            account_filter.extend(self.accounts_for_environment(self.env))

        LOG.info('Account filter: {}'.format(account_filter or 'none'))
        return account_filter

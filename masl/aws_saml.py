# -*- coding: utf-8 -*-
#
# Credits: This code was copied from
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
"""AWS SAML assertion parser."""
import base64
import binascii
import logging
import xml.etree.ElementTree as ET

from masl.config import search_accounts

LOG = logging.getLogger(__name__)

UNKNOWN_ACCOUNT_NAME = 'untitled'

# Element path from the document root down to the role values
ATTRIBUTE_PATH = ('Assertion', 'AttributeStatement', 'Attribute',
                  'AttributeValue')


class InvalidSaml(Exception):
    """Raised when the SAML Assertion is invalid for some reason."""


def local_name(tag):
    """Strip the {namespace} from an ElementTree tag."""
    return tag.rsplit('}', 1)[-1]


def parse_arn(arn):
    """Split an ARN into its six fields.

    arn:partition:service:region:account-id:resource

    Returns: Dict of the ARN fields
    """
    fields = arn.split(':', 5)
    if len(fields) != 6 or fields[0] != 'arn':
        raise InvalidSaml('Not an ARN: {}'.format(arn))
    return dict(zip(['arn', 'partition', 'service', 'region', 'account',
                     'resource'], fields))


class Role(object):
    """One AWS role the assertion lets us assume."""

    def __init__(self, role_arn, principal_arn, account_id,
                 account_name=UNKNOWN_ACCOUNT_NAME,
                 environment_independent=False):
        self.role_arn = role_arn
        self.principal_arn = principal_arn
        self.account_id = account_id
        self.account_name = account_name
        self.environment_independent = environment_independent
        # Set once the final list is filtered and sorted
        self.ordinal = None

    @property
    def role_name(self):
        """The role's name, ie. 'Admin' for arn:aws:iam::1:role/Admin."""
        return parse_arn(self.role_arn)['resource'].partition('/')[2]

    def __repr__(self):
        return 'Role({}, {}, {})'.format(self.account_id, self.role_name,
                                         self.account_name)


class SamlAssertion:
    """Handle the AWS SAML assertion."""

    def __init__(self, assertion):
        self.assertion = assertion

    def decode(self):
        """Decode the base64 assertion into its XML bytes."""
        try:
            return base64.b64decode(self.assertion)
        except (binascii.Error, ValueError, TypeError) as err:
            raise InvalidSaml('Assertion is not valid base64: {}'.format(err))

    def attribute_values(self):
        """Walk Response/Assertion/AttributeStatement/Attribute/AttributeValue.

        Returns: List of the attribute value strings in document order
        """
        try:
            root = ET.fromstring(self.decode())
        except ET.ParseError as err:
            LOG.error('Could not parse the SAML assertion XML')
            raise InvalidSaml('Assertion is not valid XML: {}'.format(err))

        if local_name(root.tag) != 'Response':
            raise InvalidSaml('Assertion root is {}, not Response'.format(
                local_name(root.tag)))

        elements = [root]
        for name in ATTRIBUTE_PATH:
            elements = [child for element in elements for child in element
                        if local_name(child.tag) == name]

        return [(x.text or '').strip() for x in elements]

    @staticmethod
    def split_roles(value):
        """Split one role attribute value into its role and principal ARNs.

        The value is "<role arn>,<principal arn>"; some IdPs put the
        principal first, so when both ARNs are recognisable they are placed
        by their resource type rather than by position.
        """
        fields = [x.strip() for x in value.split(',')]
        if len(fields) < 2:
            LOG.error('Malformed role attribute value: {}'.format(value))
            raise InvalidSaml('Role attribute value needs a role and a '
                              'principal ARN: {}'.format(value))

        role = next((x for x in fields if ':role/' in x), None)
        principal = next((x for x in fields if ':saml-provider/' in x), None)
        if role is None or principal is None:
            role, principal = fields[0], fields[1]
        return role, principal

    def roles(self, accounts=None):
        """Extract the roles from the assertion.

        Args:
            accounts: List of config.Account used to name the accounts

        Returns: List of Role in assertion order
        """
        roles = []
        for value in self.attribute_values():
            if 'role' not in value:
                continue
            role_arn, principal_arn = self.split_roles(value)
            parse_arn(role_arn)
            account_id = parse_arn(principal_arn)['account']
            name, independent = search_accounts(accounts or [], account_id)
            if name is None:
                name = UNKNOWN_ACCOUNT_NAME
            roles.append(Role(role_arn, principal_arn, account_id, name,
                              independent))
        return roles

    def encode(self):
        """The assertion as STS wants it; base64 text."""
        if isinstance(self.assertion, bytes):
            return self.assertion.decode()
        return self.assertion


def decode_roles(assertion, accounts=None, account_filter=None,
                 role_name=None):
    """Decode an assertion into the roles the user can pick from.

    A role is kept when it matches the role name (case-insensitively) and its
    account is in the account filter; an empty filter or name keeps all.
    The result is sorted by account name, keeping assertion order for
    equal names, and numbered from 1.

    Args:
        assertion: String base64 encoded SAML assertion
        accounts: List of config.Account
        account_filter: List of account ID strings
        role_name: String role name

    Returns: List of Role
    """
    roles = [
        role for role in SamlAssertion(assertion).roles(accounts)
        if (not role_name or role.role_name.lower() == role_name.lower())
        and (not account_filter or role.account_id in account_filter)
    ]
    roles = sorted(roles, key=lambda role: role.account_name)

    for ordinal, role in enumerate(roles, 1):
        role.ordinal = ordinal

    LOG.debug('Roles after filtering: {}'.format(roles))
    return roles

# -*- coding: UTF-8 -*-
import datetime
import logging
import os
import unittest
from unittest import mock

import botocore.exceptions
import keyring
import requests

from masl import aws, aws_saml, onelogin
from masl.masl import InvalidSelection, Masl
from masl.onelogin_saml import Completed, MFADevice, MFARequired


ROLES = [
    aws_saml.Role('arn:aws:iam::222222222222:role/Admin',
                  'arn:aws:iam::222222222222:saml-provider/OneLogin',
                  '222222222222', 'alpha-qa'),
    aws_saml.Role('arn:aws:iam::111111111111:role/Dev',
                  'arn:aws:iam::111111111111:saml-provider/OneLogin',
                  '111111111111', 'zulu-dev'),
]

DEVICES = [MFADevice(111, 'Google Authenticator'),
           MFADevice(222, 'Yubico YubiKey')]

CREDS = aws.TemporaryCredentials(
    'key', 'secret', 'token', datetime.datetime(2018, 9, 28, 16, 10),
    'arn:aws:sts::222222222222:assumed-role/Admin/bob')


@mock.patch('masl.masl.Config')
class MaslTest(unittest.TestCase):

    @staticmethod
    def build(config_mock, argv=None):
        config_mock().debug = False
        config_mock().profile = 'masl'
        config_mock().password_cache = False
        config_mock().default_mfa_device = None
        return Masl(argv or ['masl'])

    def stub_main(self, masl, roles=None):
        masl.user_password = mock.MagicMock(return_value='pass')
        masl.init_onelogin = mock.MagicMock()
        masl.authenticate = mock.MagicMock(return_value='assertion')
        masl.select_role = mock.MagicMock(return_value=ROLES[0])
        masl.assume_role = mock.MagicMock(return_value=CREDS)
        masl.write_credentials = mock.MagicMock()
        masl.wrap_up = mock.MagicMock()
        patcher = mock.patch('masl.masl.aws_saml.decode_roles')
        decode_mock = patcher.start()
        self.addCleanup(patcher.stop)
        decode_mock.return_value = ROLES if roles is None else roles
        return decode_mock

    def test_init(self, config_mock):
        masl = self.build(config_mock)

        assert isinstance(masl, Masl)
        config_mock.assert_called_with(['masl'])
        assert config_mock().get_config.called

    def test_init_use_debug(self, config_mock):
        self.build(config_mock)
        config_mock().debug = True
        root_level = logging.getLogger().level
        self.addCleanup(logging.getLogger().setLevel, root_level)
        self.addCleanup(logging.getLogger('masl.masl').setLevel,
                        logging.NOTSET)

        masl = Masl(['masl', '-D'])

        log_level = logging.getLevelName(masl.log.getEffectiveLevel())
        self.assertEqual('DEBUG', log_level)

    def test_init_bad_config(self, config_mock):
        config_mock().get_config.side_effect = ValueError('no base_url')

        with self.assertRaises(SystemExit) as err:
            Masl(['masl'])

        self.assertEqual(err.exception.code, 1)

    def test_main(self, config_mock):
        masl = self.build(config_mock)
        decode_mock = self.stub_main(masl)
        config_mock().account_filter.return_value = ['222222222222']
        config_mock().role = 'Admin'

        self.assertIsNone(masl.main())

        masl.init_onelogin.assert_called_with('pass')
        decode_mock.assert_called_with('assertion',
                                       config_mock().directory(),
                                       ['222222222222'], 'Admin')
        masl.select_role.assert_called_with(ROLES)
        masl.assume_role.assert_called_with('assertion', ROLES[0])
        masl.write_credentials.assert_called_with(CREDS, ROLES[0])
        masl.wrap_up.assert_called_with(CREDS, ROLES[0])

    def test_main_no_roles(self, config_mock):
        masl = self.build(config_mock)
        self.stub_main(masl, roles=[])

        self.assertIsNone(masl.main())

        assert not masl.select_role.called
        assert not masl.assume_role.called
        assert not masl.write_credentials.called

    def check_exit(self, config_mock, method, error, code):
        masl = self.build(config_mock)
        self.stub_main(masl)
        getattr(masl, method).side_effect = error

        with self.assertRaises(SystemExit) as err:
            masl.main()

        self.assertEqual(err.exception.code, code)
        return masl

    def test_main_empty_input(self, config_mock):
        self.check_exit(config_mock, 'init_onelogin',
                        onelogin.EmptyInput(), 1)

    def test_main_auth_error(self, config_mock):
        masl = self.check_exit(config_mock, 'authenticate',
                               onelogin.AuthError('Bad password', 401), 1)

        assert not masl.assume_role.called

    def test_main_auth_error_password_cache(self, config_mock):
        masl = self.build(config_mock)
        self.stub_main(masl)
        config_mock().password_cache = True
        masl.log = mock.MagicMock()
        masl.authenticate.side_effect = onelogin.AuthError('Bad password')

        with self.assertRaises(SystemExit):
            masl.main()

        assert masl.log.warning.called

    def test_main_invalid_selection(self, config_mock):
        self.check_exit(config_mock, 'select_role',
                        InvalidSelection('nope'), 1)

    def test_main_keyboard_interrupt(self, config_mock):
        self.check_exit(config_mock, 'user_password', KeyboardInterrupt, 1)

    def test_main_invalid_response(self, config_mock):
        self.check_exit(config_mock, 'authenticate',
                        onelogin.InvalidResponse('no data'), 2)

    def test_main_invalid_saml(self, config_mock):
        masl = self.build(config_mock)
        decode_mock = self.stub_main(masl)
        decode_mock.side_effect = aws_saml.InvalidSaml('bad xml')

        with self.assertRaises(SystemExit) as err:
            masl.main()

        self.assertEqual(err.exception.code, 2)

    def test_main_transport_error(self, config_mock):
        self.check_exit(config_mock, 'authenticate',
                        requests.exceptions.ConnectionError(), 3)

    def test_main_aws_error(self, config_mock):
        error = botocore.exceptions.ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'Not authorized'}},
            'AssumeRoleWithSAML')
        masl = self.check_exit(config_mock, 'assume_role', error, 4)

        assert not masl.write_credentials.called

    def test_main_unhandled_exception(self, config_mock):
        self.check_exit(config_mock, 'authenticate', Exception('boom'), 5)

    def test_main_write_error(self, config_mock):
        self.check_exit(config_mock, 'write_credentials',
                        PermissionError('read only'), 6)

    @mock.patch('builtins.input')
    def test_user_input(self, input_mock, config_mock):
        input_mock.return_value = ' test '

        self.assertEqual('test', Masl.user_input('input test'))

    @mock.patch('masl.masl.getpass')
    def test_user_password_no_cache(self, pass_mock, config_mock):
        masl = self.build(config_mock)
        pass_mock.getpass.return_value = 'test'

        self.assertEqual('test', masl.user_password())
        pass_mock.getpass.assert_called_with('OneLogin Password: ')

    @mock.patch('masl.masl.keyring.set_password')
    @mock.patch('masl.masl.keyring.get_password')
    @mock.patch('masl.masl.keyring.get_keyring')
    @mock.patch('masl.masl.getpass')
    def test_user_password_cache_hit(self, pass_mock, _keyring_kr_mock,
                                     keyring_pw_mock, keyring_set_mock,
                                     config_mock):
        masl = self.build(config_mock)
        config_mock().password_cache = True
        config_mock().password_reset = False
        config_mock().username = 'bob'
        keyring_pw_mock.return_value = 'cached'

        self.assertEqual('cached', masl.user_password())
        keyring_pw_mock.assert_called_with('masl', 'bob')
        assert not pass_mock.getpass.called
        assert not keyring_set_mock.called

    @mock.patch('masl.masl.keyring.set_password')
    @mock.patch('masl.masl.keyring.get_password')
    @mock.patch('masl.masl.keyring.get_keyring')
    @mock.patch('masl.masl.getpass')
    def test_user_password_cache_reset(self, pass_mock, _keyring_kr_mock,
                                       keyring_pw_mock, keyring_set_mock,
                                       config_mock):
        masl = self.build(config_mock)
        config_mock().password_cache = True
        config_mock().password_reset = True
        config_mock().username = 'bob'
        keyring_pw_mock.return_value = 'stale'
        pass_mock.getpass.return_value = 'fresh'

        self.assertEqual('fresh', masl.user_password())
        keyring_set_mock.assert_called_with('masl', 'bob', 'fresh')

    @mock.patch('masl.masl.keyring.get_password')
    @mock.patch('masl.masl.keyring.get_keyring')
    @mock.patch('masl.masl.getpass')
    def test_user_password_cache_unavailable(self, pass_mock, keyring_kr_mock,
                                             keyring_pw_mock, config_mock):
        masl = self.build(config_mock)
        config_mock().password_cache = True
        config_mock().password_reset = False
        keyring_kr_mock.side_effect = keyring.errors.InitError
        pass_mock.getpass.return_value = 'test'

        self.assertEqual('test', masl.user_password())
        assert not keyring_pw_mock.called

    def test_generate_template(self, config_mock):
        data = [{'account_id': '222222222222', 'role_name': 'Admin'}]
        header = [{'account_id': 'Account'}, {'role_name': 'Role'}]

        ret = Masl.generate_template(data, header)

        self.assertEqual(ret, '{account_id:14}{role_name:7}')

    def test_generate_header(self, config_mock):
        header = [{'account_id': 'Account'}, {'role_name': 'Role'}]

        ret = Masl.generate_header(header)

        self.assertEqual(ret, {'account_id': 'Account', 'role_name': 'Role'})

    @mock.patch('builtins.print')
    def test_print_selector_table(self, print_mock, config_mock):
        data = [{'device_type': 'Google Authenticator'},
                {'device_type': 'Yubico YubiKey'}]
        header = [{'device_type': 'MFA Device'}]

        Masl.print_selector_table('{device_type:22}', header, data)

        print_mock.assert_has_calls([
            mock.call('\n    MFA Device            '),
            mock.call('[1] Google Authenticator  '),
            mock.call('[2] Yubico YubiKey        '),
        ])

    @mock.patch('builtins.print')
    def test_selector_menu(self, _print_mock, config_mock):
        masl = self.build(config_mock)
        masl.user_input = mock.MagicMock(return_value='2')
        data = [{'name': 'a'}, {'name': 'b'}]

        self.assertEqual(masl.selector_menu(data, [{'name': 'Name'}]), 1)

    @mock.patch('builtins.print')
    def test_selector_menu_not_a_number(self, _print_mock, config_mock):
        masl = self.build(config_mock)
        masl.user_input = mock.MagicMock(return_value='b')
        data = [{'name': 'a'}, {'name': 'b'}]

        with self.assertRaises(InvalidSelection):
            masl.selector_menu(data, [{'name': 'Name'}])
        self.assertEqual(masl.user_input.call_count, 1)

    @mock.patch('builtins.print')
    def test_selector_menu_out_of_range(self, _print_mock, config_mock):
        masl = self.build(config_mock)
        data = [{'name': 'a'}, {'name': 'b'}]

        for answer in ('0', '3', '-1'):
            masl.user_input = mock.MagicMock(return_value=answer)
            with self.assertRaises(InvalidSelection):
                masl.selector_menu(data, [{'name': 'Name'}])

    @mock.patch('masl.masl.onelogin_saml.OneLoginSaml')
    def test_init_onelogin(self, onelogin_mock, config_mock):
        masl = self.build(config_mock)
        config_mock().base_url = 'https://api.eu.onelogin.com/'
        config_mock().client_id = 'id'
        config_mock().client_secret = 'secret'
        config_mock().username = 'bob'
        config_mock().appid = '123'
        config_mock().subdomain = 'foo'

        masl.init_onelogin('pass')

        onelogin_mock.assert_called_with(
            'https://api.eu.onelogin.com/', 'id', 'secret', 'bob', 'pass',
            appid='123', subdomain='foo')
        self.assertEqual(masl.onelogin_client, onelogin_mock())

    def test_authenticate_no_mfa(self, config_mock):
        masl = self.build(config_mock)
        masl.onelogin_client = mock.MagicMock()
        masl.onelogin_client.saml_assertion.return_value = Completed('abc')

        self.assertEqual(masl.authenticate(), 'abc')
        assert masl.onelogin_client.generate_token.called
        assert not masl.onelogin_client.verify_factor.called

    def test_authenticate_mfa(self, config_mock):
        masl = self.build(config_mock)
        masl.onelogin_client = mock.MagicMock()
        masl.onelogin_client.saml_assertion.return_value = MFARequired(
            'XXXSTATEXXX', [DEVICES[1]])
        masl.onelogin_client.verify_factor.return_value = 'def'
        masl.user_input = mock.MagicMock(return_value='123456')

        self.assertEqual(masl.authenticate(), 'def')
        masl.user_input.assert_called_with(
            'Enter your YubiKey security code: ')
        masl.onelogin_client.verify_factor.assert_called_with(
            'XXXSTATEXXX', 222, '123456')

    def test_authenticate_mfa_rejected(self, config_mock):
        masl = self.build(config_mock)
        masl.onelogin_client = mock.MagicMock()
        masl.onelogin_client.saml_assertion.return_value = MFARequired(
            'XXXSTATEXXX', [DEVICES[0]])
        masl.onelogin_client.verify_factor.side_effect = onelogin.AuthError(
            'Failed authentication with this factor')
        masl.user_input = mock.MagicMock(return_value='000000')

        with self.assertRaises(onelogin.AuthError):
            masl.authenticate()

    def test_select_mfa_device_single(self, config_mock):
        masl = self.build(config_mock)
        masl.selector_menu = mock.MagicMock()

        self.assertEqual(masl.select_mfa_device([DEVICES[0]]), DEVICES[0])
        assert not masl.selector_menu.called

    def test_select_mfa_device_default(self, config_mock):
        masl = self.build(config_mock)
        config_mock().default_mfa_device = 'yubico yubikey'
        masl.selector_menu = mock.MagicMock()

        self.assertEqual(masl.select_mfa_device(DEVICES), DEVICES[1])
        assert not masl.selector_menu.called

    def test_select_mfa_device_unmatched_default(self, config_mock):
        masl = self.build(config_mock)
        config_mock().default_mfa_device = 'Duo'
        masl.selector_menu = mock.MagicMock(return_value=0)

        self.assertEqual(masl.select_mfa_device(DEVICES), DEVICES[0])
        assert masl.selector_menu.called

    def test_select_mfa_device_menu(self, config_mock):
        masl = self.build(config_mock)
        masl.selector_menu = mock.MagicMock(return_value=1)

        self.assertEqual(masl.select_mfa_device(DEVICES), DEVICES[1])
        masl.selector_menu.assert_called_with(
            [{'device_type': 'Google Authenticator'},
             {'device_type': 'Yubico YubiKey'}],
            [{'device_type': 'MFA Device'}])

    def test_otp_prompt(self, config_mock):
        self.assertEqual(Masl.otp_prompt(DEVICES[0]),
                         'Enter your Google Authenticator one-time password: ')
        self.assertEqual(Masl.otp_prompt(DEVICES[1]),
                         'Enter your YubiKey security code: ')

    def test_select_role_single(self, config_mock):
        masl = self.build(config_mock)
        masl.selector_menu = mock.MagicMock()

        self.assertEqual(masl.select_role([ROLES[1]]), ROLES[1])
        assert not masl.selector_menu.called

    def test_select_role_menu(self, config_mock):
        masl = self.build(config_mock)
        masl.selector_menu = mock.MagicMock(return_value=1)

        self.assertEqual(masl.select_role(ROLES), ROLES[1])
        rows = masl.selector_menu.call_args[0][0]
        self.assertEqual(rows[0], {'account_id': '222222222222',
                                   'role_name': 'Admin',
                                   'account_name': 'alpha-qa'})

    def test_select_role_menu_uses_ordinals(self, config_mock):
        masl = self.build(config_mock)
        roles = [aws_saml.Role(r.role_arn, r.principal_arn, r.account_id,
                               r.account_name) for r in ROLES]
        roles[0].ordinal, roles[1].ordinal = 1, 2
        masl.user_input = mock.MagicMock(return_value='2')

        with mock.patch('builtins.print') as print_mock:
            ret = masl.select_role(roles)

        self.assertEqual(ret, roles[1])
        printed = [c[0][0] for c in print_mock.call_args_list]
        self.assertTrue(printed[1].startswith('[1] 222222222222'))
        self.assertTrue(printed[2].startswith('[2] 111111111111'))

    @mock.patch('builtins.print')
    def test_selector_menu_given_numbers(self, print_mock, config_mock):
        masl = self.build(config_mock)
        data = [{'name': 'a'}, {'name': 'b'}]
        masl.user_input = mock.MagicMock(return_value='5')

        self.assertEqual(
            masl.selector_menu(data, [{'name': 'Name'}], [3, 5]), 1)
        print_mock.assert_any_call('[3] a     ')

        masl.user_input = mock.MagicMock(return_value='1')
        with self.assertRaises(InvalidSelection):
            masl.selector_menu(data, [{'name': 'Name'}], [3, 5])

    @mock.patch('masl.masl.aws.Session')
    def test_assume_role(self, session_mock, config_mock):
        masl = self.build(config_mock)
        config_mock().region = 'eu-west-1'
        config_mock().duration = 900
        session_mock().assume_role.return_value = CREDS

        ret = masl.assume_role('assertion', ROLES[0])

        self.assertEqual(ret, CREDS)
        session_mock.assert_called_with('assertion', region='eu-west-1',
                                        session_duration=900)
        session_mock().assume_role.assert_called_with(ROLES[0])

    @mock.patch('masl.masl.aws.Credentials')
    def test_write_credentials_named_account(self, creds_mock, config_mock):
        masl = self.build(config_mock)
        config_mock().legacy_token = False

        ret = masl.write_credentials(CREDS, ROLES[0])

        self.assertEqual(ret, ['masl', 'alpha-qa'])
        creds_mock().add_profile.assert_has_calls([
            mock.call('masl', CREDS, False),
            mock.call('alpha-qa', CREDS, False),
        ])

    @mock.patch('masl.masl.aws.Credentials')
    def test_write_credentials_unknown_account(self, creds_mock, config_mock):
        masl = self.build(config_mock)
        config_mock().legacy_token = True
        role = aws_saml.Role('arn:aws:iam::999999999999:role/Admin',
                             'arn:aws:iam::999999999999:saml-provider/x',
                             '999999999999')

        ret = masl.write_credentials(CREDS, role)

        self.assertEqual(ret, ['masl'])
        creds_mock().add_profile.assert_called_once_with('masl', CREDS, True)

    @mock.patch.dict(os.environ, {'AWS_PROFILE': 'masl'})
    def test_wrap_up(self, config_mock):
        masl = self.build(config_mock)
        masl.log = mock.MagicMock()

        masl.wrap_up(CREDS, ROLES[0])

        assert not masl.log.warning.called
        masl.log.info.assert_any_call(
            'Assumed User: arn:aws:sts::222222222222:assumed-role/Admin/bob')
        masl.log.info.assert_any_call('In account: 222222222222 [alpha-qa]')

    @mock.patch.dict(os.environ, {'AWS_PROFILE': 'work'})
    def test_wrap_up_profile_mismatch(self, config_mock):
        masl = self.build(config_mock)
        masl.log = mock.MagicMock()

        masl.wrap_up(CREDS, ROLES[0])

        assert masl.log.warning.called
        self.assertIn("'work'", masl.log.warning.call_args[0][0])

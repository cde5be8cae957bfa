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


__version__ = '0.4.0'
__desc__ = 'masl'
__desc_long__ = ('''
=====================================
masl - Multi Account SAML Login
=====================================
masl is a command-line interface for retrieving temporary credentials from
AWS for use during development. It authenticates with OneLogin, optionally
verifies an MFA device, and exchanges the resulting SAML assertion for keys
from AWS STS. These are saved in ~/.aws/credentials for use with other
software.''')

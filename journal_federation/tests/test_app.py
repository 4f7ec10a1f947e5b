"""API tests for the journal federation service."""

from unittest import TestCase, mock
from http import HTTPStatus
from urllib.parse import parse_qs, urlparse
import io
import json
import os
import shutil
import tempfile
import zipfile

from .. import context, domain
from ..factory import create_app
from ..federation.client import FederationClient
from ..tokens import TokenService

SECRET = 'foosecret'
LOCAL = 'https://journal-zero.example.org'
FRONTEND = 'https://www.journal-zero.example.org'
REMOTE = 'https://journal-one.example.org'
EVIL = 'https://evil.example.net'


def _zip(entries: dict) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def _user(user_id: str = 'u0t00', username: str = 'local') \
        -> domain.SessionUser:
    return domain.SessionUser(user_id=user_id, username=username,
                              email=f'{username}@t00.org', first_name='Lo',
                              last_name='Cal', has_verified_email=True)


class AppTestCase(TestCase):
    """Runs a complete instance on a temporary directory and SQLite."""

    def setUp(self):
        self.directory = tempfile.mkdtemp()
        self.environ = mock.patch.dict(os.environ, {
            'JWT_SECRET': SECRET,
            'JOURNAL_ID': 't00',
            'JOURNAL_URL': LOCAL,
            'FRONTEND_URL': FRONTEND,
            'SUBMISSION_DIRECTORY': self.directory,
            'SQLALCHEMY_DATABASE_URI': 'sqlite://',
            'FEDERATION_PEERS': json.dumps({'t01': REMOTE}),
            'AUTH_SESSION_COOKIE_SECURE': '0',
            'JSON_LOGS': '0',
        })
        self.environ.start()
        self.app = create_app()
        self.client = self.app.test_client()

        self.remote = mock.MagicMock(spec=FederationClient)
        patcher = mock.patch(f'{context.__name__}.current_client',
                             return_value=self.remote)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.tokens = TokenService(SECRET)
        self.app_context = self.app.app_context()
        self.app_context.push()
        self.datastore = context.current_datastore()
        self.author = self.datastore.create_user(_user())
        self.archives = context.current_archives()
        self.archive_id = self.archives.compress('paper.zip', _zip({
            'main.tex': '\\section{Intro}',
            'figures/plot.txt': 'x,y',
        }))
        self.submission = self.datastore.create_submission(
            self.author.user_id, self.archive_id, 'On things'
        )

    def tearDown(self):
        self.datastore.drop_all()
        self.app_context.pop()
        self.environ.stop()
        shutil.rmtree(self.directory)

    def log_in(self, user: domain.SessionUser) -> None:
        self.client.set_cookie(self.app.config['AUTH_SESSION_COOKIE_NAME'],
                               self.tokens.issue_session(user))


class TestConfiguration(TestCase):
    @mock.patch.dict(os.environ, {'JWT_SECRET': ''})
    def test_no_secret(self):
        """The application refuses to start without a signing secret."""
        with self.assertRaises(RuntimeError):
            create_app()


class TestUsers(AppTestCase):
    """Peers look up our users by federated id."""

    def test_get_user(self):
        response = self.client.get('/federation/users/u0t00')
        self.assertEqual(response.status_code, HTTPStatus.OK)
        data = json.loads(response.data)
        self.assertEqual(data['status'], 'ok')
        self.assertEqual(data['id'], 'u0t00')
        self.assertEqual(data['name'], 'Lo Cal')

    def test_foreign_user(self):
        response = self.client.get('/federation/users/u0t01')
        self.assertEqual(response.status_code, HTTPStatus.BAD_REQUEST)
        self.assertIn('reason', json.loads(response.data))

    def test_no_such_user(self):
        response = self.client.get('/federation/users/nobodyt00')
        self.assertEqual(response.status_code, HTTPStatus.NOT_FOUND)


class TestSubmissionExchange(AppTestCase):
    """Exported submissions are served only against a matching token."""

    def _headers(self, token: str) -> dict:
        return {'Authorization': f'Bearer {token}',
                'Content-Type': 'application/zip'}

    def test_get_binary(self):
        token = self.tokens.issue_export_authorization(
            self.submission.submission_id
        )
        response = self.client.get(
            f'/federation/submissions/{self.submission.submission_id}',
            headers=self._headers(token)
        )
        self.assertEqual(response.status_code, HTTPStatus.OK)
        self.assertEqual(response.data, self.archives.read(self.archive_id))
        self.assertEqual(response.headers['Content-Type'], 'application/zip')
        self.assertTrue(response.headers['Content-Disposition']
                        .startswith('attachment'))

    def test_no_token(self):
        response = self.client.get(
            f'/federation/submissions/{self.submission.submission_id}'
        )
        self.assertEqual(response.status_code, HTTPStatus.UNAUTHORIZED)
        self.assertIn('reason', json.loads(response.data))

    def test_token_for_other_submission(self):
        """A valid export token only opens the submission it was minted for."""
        token = self.tokens.issue_export_authorization('someothersubmission')
        response = self.client.get(
            f'/federation/submissions/{self.submission.submission_id}',
            headers=self._headers(token)
        )
        self.assertEqual(response.status_code, HTTPStatus.FORBIDDEN)

    def test_token_for_other_purpose(self):
        """A password reset token is not an export token."""
        token = self.tokens.issue_password_reset(self.author.user_id)
        response = self.client.get(
            f'/federation/submissions/{self.submission.submission_id}',
            headers=self._headers(token)
        )
        self.assertEqual(response.status_code, HTTPStatus.UNAUTHORIZED)

    def test_get_metadata(self):
        submission_id = self.submission.submission_id
        token = self.tokens.issue_export_authorization(submission_id)
        response = self.client.get(
            f'/federation/submissions/{submission_id}/metadata',
            headers=self._headers(token)
        )
        self.assertEqual(response.status_code, HTTPStatus.OK)
        data = json.loads(response.data)
        self.assertEqual(data['status'], 'ok')
        self.assertEqual(data['publication']['title'], 'On things')
        self.assertEqual(data['publication']['owner'], 'u0t00')
        self.assertEqual(data['reviews'], [])


class TestImport(AppTestCase):
    """Peers offer us their submissions."""

    def _metadata(self) -> domain.ImportedSubmission:
        return domain.ImportedSubmission(
            publication=domain.ImportedPublication(
                name='main.tex', title='Elsewhere', owner='u7t01',
                introduction='', revision='v1'
            ),
            reviews=[]
        )

    def test_import(self):
        self.remote.fetch_submission_binary.return_value = \
            _zip({'main.tex': 'hi'})
        self.remote.fetch_submission_metadata.return_value = self._metadata()
        self.remote.fetch_remote_user.return_value = \
            domain.FederatedUserStub('Ann Other', 'ann@t01.org', 'u7t01')

        response = self.client.post('/federation/submissions/import',
                                    query_string={'from': REMOTE,
                                                  'id': 'sub-1',
                                                  'token': 'tok'})
        self.assertEqual(response.status_code, HTTPStatus.OK)
        data = json.loads(response.data)
        self.assertEqual(data['status'], 'ok')
        imported = self.datastore.get_submission(data['submissionId'])
        self.assertEqual(imported.title, 'Elsewhere')
        self.assertEqual(imported.author.user_id, 'u7t01')
        self.remote.fetch_submission_binary.assert_called_once_with(
            REMOTE, 'sub-1', 'tok'
        )

    def test_import_failed(self):
        """Nothing is kept when the peer does not deliver."""
        self.remote.fetch_submission_binary.return_value = None
        response = self.client.post('/federation/submissions/import',
                                    query_string={'from': REMOTE,
                                                  'id': 'sub-1',
                                                  'token': 'tok'})
        self.assertEqual(response.status_code, HTTPStatus.BAD_REQUEST)
        self.assertEqual(json.loads(response.data)['reason'],
                         'malformed request')
        self.assertEqual(self.datastore.count_submissions(), 1)

    def test_unknown_peer(self):
        """Only configured peers are fetched from."""
        response = self.client.post('/federation/submissions/import',
                                    query_string={'from': EVIL, 'id': 'sub-1',
                                                  'token': 'tok'})
        self.assertEqual(response.status_code, HTTPStatus.BAD_REQUEST)
        self.remote.fetch_submission_binary.assert_not_called()
        self.assertEqual(self.datastore.count_submissions(), 1)

    def test_missing_parameter(self):
        response = self.client.post('/federation/submissions/import',
                                    query_string={'from': REMOTE})
        self.assertEqual(response.status_code, HTTPStatus.BAD_REQUEST)
        self.remote.fetch_submission_binary.assert_not_called()


class TestExport(AppTestCase):
    """Users offer their own submissions to peers."""

    def _export(self, to: str = 't01'):
        return self.client.post(
            f'/federation/submissions/{self.submission.submission_id}/export',
            query_string={'to': to}
        )

    def test_not_logged_in(self):
        self.assertEqual(self._export().status_code, HTTPStatus.UNAUTHORIZED)
        self.remote.notify_import.assert_not_called()

    def test_export(self):
        self.remote.notify_import.return_value = True
        self.log_in(self.author)
        response = self._export()
        self.assertEqual(response.status_code, HTTPStatus.OK)
        url, submission_id, token = self.remote.notify_import.call_args[0]
        self.assertEqual(url, REMOTE)
        self.assertEqual(submission_id, self.submission.submission_id)
        claims = self.tokens.verify_export_authorization(token)
        self.assertEqual(claims.submission_id, submission_id)

    def test_not_the_author(self):
        other = self.datastore.create_user(_user('u9t00', 'other'))
        self.log_in(other)
        self.assertEqual(self._export().status_code, HTTPStatus.FORBIDDEN)
        self.remote.notify_import.assert_not_called()

    def test_refused(self):
        self.remote.notify_import.return_value = False
        self.log_in(self.author)
        self.assertEqual(self._export().status_code, HTTPStatus.BAD_REQUEST)

    def test_unknown_journal(self):
        self.log_in(self.author)
        self.assertEqual(self._export('t99').status_code,
                         HTTPStatus.BAD_REQUEST)


class TestSingleSignOn(AppTestCase):
    """Users log in here with accounts on peers, and vice versa."""

    def _query(self, location: str) -> dict:
        return {key: values[0]
                for key, values in parse_qs(urlparse(location).query).items()}

    def test_begin(self):
        response = self.client.get('/federation/sso/begin',
                                   query_string={'journal': 't01'})
        self.assertEqual(response.status_code, HTTPStatus.FOUND)
        location = response.headers['Location']
        self.assertTrue(location.startswith(f'{REMOTE}/federation/sso/login'))
        query = self._query(location)
        self.assertEqual(query['from'], LOCAL)
        cookies = response.headers.getlist('Set-Cookie')
        self.assertTrue(any(c.startswith(self.app.config['SSO_COOKIE_NAME'])
                            for c in cookies))

    def test_begin_unknown_journal(self):
        """Users are only sent to configured peers."""
        response = self.client.get('/federation/sso/begin',
                                   query_string={'journal': EVIL})
        self.assertEqual(response.status_code, HTTPStatus.BAD_REQUEST)
        self.assertNotIn('Location', response.headers)

    def test_begin_by_url(self):
        response = self.client.get('/federation/sso/begin',
                                   query_string={'journal': REMOTE + '/'})
        self.assertEqual(response.status_code, HTTPStatus.FOUND)

    def test_login_anonymous(self):
        response = self.client.get('/federation/sso/login',
                                   query_string={'from': REMOTE,
                                                 'state': 's1'})
        location = response.headers['Location']
        self.assertTrue(location.startswith(f'{FRONTEND}/login?'))
        query = self._query(location)
        self.assertEqual(query['sso'], 'true')
        self.assertEqual(query['redirectUrl'], REMOTE)
        self.assertEqual(query['state'], 's1')

    def test_login_logged_in(self):
        self.log_in(self.author)
        response = self.client.get('/federation/sso/login',
                                   query_string={'from': REMOTE,
                                                 'state': 's1'})
        self.assertTrue(response.headers['Location']
                        .startswith(f'{FRONTEND}/confirm_sso?'))

    def test_confirm_and_verify(self):
        """A confirmed handoff token vouches for the logged-in user."""
        self.assertEqual(
            self.client.get('/federation/sso/confirm',
                            query_string={'redirectUrl': REMOTE,
                                          'state': 's1'}).status_code,
            HTTPStatus.UNAUTHORIZED
        )
        self.log_in(self.author)
        response = self.client.get('/federation/sso/confirm',
                                   query_string={'redirectUrl': REMOTE,
                                                 'state': 's1'})
        location = response.headers['Location']
        self.assertTrue(
            location.startswith(f'{REMOTE}/federation/sso/callback')
        )
        query = self._query(location)
        self.assertEqual(query['state'], 's1')
        self.assertEqual(query['from'], LOCAL)

        response = self.client.post('/federation/sso/verify',
                                    query_string={'token': query['token']})
        self.assertEqual(response.status_code, HTTPStatus.OK)
        self.assertEqual(json.loads(response.data)['id'], 'u0t00')

    def test_verify_bad_token(self):
        response = self.client.post('/federation/sso/verify',
                                    query_string={'token': 'nope'})
        self.assertEqual(response.status_code, HTTPStatus.FORBIDDEN)

    def _callback(self, state: str = 's1'):
        self.client.set_cookie(self.app.config['SSO_COOKIE_NAME'],
                               json.dumps({'state': 's1', 'url': REMOTE}))
        return self.client.get('/federation/sso/callback',
                               query_string={'token': 'tok', 'state': state,
                                             'from': REMOTE})

    def test_callback(self):
        """The vouched-for user is created and logged in."""
        self.remote.verify_sso_token.return_value = _user('abct01', 'ann')
        response = self._callback()
        self.assertEqual(response.status_code, HTTPStatus.FOUND)
        self.assertEqual(response.headers['Location'], f'{FRONTEND}/dashboard')
        cookies = response.headers.getlist('Set-Cookie')
        session_cookie = [
            c for c in cookies
            if c.startswith(self.app.config['AUTH_SESSION_COOKIE_NAME'] + '=')
        ]
        self.assertEqual(len(session_cookie), 1)
        self.assertIsNotNone(
            self.datastore.find_user_by_federated_id('abct01')
        )
        self.remote.verify_sso_token.assert_called_once_with(REMOTE, 'tok')

    def test_callback_vouches_for_our_user(self):
        """A peer cannot log anyone in as one of our users."""
        self.remote.verify_sso_token.return_value = self.author
        response = self._callback()
        self.assertEqual(response.status_code, HTTPStatus.FORBIDDEN)
        cookies = response.headers.getlist('Set-Cookie')
        self.assertFalse(any(
            c.startswith(self.app.config['AUTH_SESSION_COOKIE_NAME'] + '=')
            for c in cookies
        ))

    def test_callback_state_mismatch(self):
        response = self._callback(state='s2')
        self.assertEqual(response.status_code, HTTPStatus.FORBIDDEN)
        self.assertEqual(json.loads(response.data)['reason'],
                         'Invalid state param')
        self.remote.verify_sso_token.assert_not_called()

    def test_callback_not_vouched(self):
        self.remote.verify_sso_token.return_value = None
        response = self._callback()
        self.assertEqual(response.status_code, HTTPStatus.FORBIDDEN)
        self.assertIsNone(self.datastore.find_user_by_federated_id('abct01'))


class TestBrowse(AppTestCase):
    """Logged-in users browse the files of a submission."""

    def _get(self, what: str, path: str):
        return self.client.get(
            f'/submissions/{self.submission.submission_id}/{what}',
            query_string={'path': path}
        )

    def test_not_logged_in(self):
        self.assertEqual(self._get('file', 'main.tex').status_code,
                         HTTPStatus.UNAUTHORIZED)

    def test_file(self):
        self.log_in(self.author)
        response = self._get('file', '/main.tex')
        self.assertEqual(response.status_code, HTTPStatus.OK)
        data = json.loads(response.data)
        self.assertEqual(data['mimeType'], 'text/plain')
        self.assertEqual(data['contents'], '\\section{Intro}')

    def test_directory_is_not_a_file(self):
        self.log_in(self.author)
        self.assertEqual(self._get('file', 'figures').status_code,
                         HTTPStatus.NOT_FOUND)

    def test_traversal(self):
        self.log_in(self.author)
        self.assertEqual(self._get('file', '../../etc/passwd').status_code,
                         HTTPStatus.NOT_FOUND)

    def test_entries(self):
        self.log_in(self.author)
        response = self._get('entries', '/')
        self.assertEqual(response.status_code, HTTPStatus.OK)
        entries = json.loads(response.data)['entries']
        self.assertEqual([(e['name'], e['isDirectory']) for e in entries],
                         [('figures', True), ('main.tex', False)])

    def test_unknown_submission(self):
        self.log_in(self.author)
        response = self.client.get('/submissions/nope/entries')
        self.assertEqual(response.status_code, HTTPStatus.NOT_FOUND)

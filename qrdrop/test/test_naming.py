import itertools

from qrdrop.common.naming import split_extension, candidate_names, claim_first


def test_split_extension():
    assert split_extension('a.txt') == ('a', '.txt')
    assert split_extension('archive.tar.gz') == ('archive.tar', '.gz')
    assert split_extension('README') == ('README', '')
    assert split_extension('.env') == ('.env', '')
    assert split_extension('.env.local') == ('.env', '.local')


def test_candidate_names_sequence():
    assert list(candidate_names('a.txt', 4)) == ['a.txt', 'a_1.txt', 'a_2.txt', 'a_3.txt']
    assert list(candidate_names('.env', 3)) == ['.env', '.env_1', '.env_2']
    assert list(candidate_names('README', 2)) == ['README', 'README_1']


def test_candidate_names_unbounded():
    names = list(itertools.islice(candidate_names('x.bin'), 200))
    assert len(names) == 200
    assert names[-1] == 'x_199.bin'


def test_claim_first_skips_rejected_candidates():
    taken = {'a.txt', 'a_1.txt'}

    def claim(name):
        if name in taken:
            return None
        return name.upper()

    assert claim_first(candidate_names('a.txt', 10), claim) == ('a_2.txt', 'A_2.TXT')


def test_claim_first_treats_file_exists_as_rejection():
    def claim(name):
        if name != 'a_3.txt':
            raise FileExistsError(name)
        return True

    assert claim_first(candidate_names('a.txt', 10), claim) == ('a_3.txt', True)


def test_claim_first_exhaustion():
    assert claim_first(candidate_names('a.txt', 3), lambda name: None) == (None, None)

import itertools
import logging
import re

_logger = logging.getLogger(__name__)
_logger.setLevel(logging.DEBUG)

ROLES = ('peer', 'member', 'admin')


class SignedBy(object):
    """Satisfied by one not yet counted endorser of ``mspid``."""

    def __init__(self, mspid):
        self.mspid = mspid

    def assignments(self, mspids, used):
        # endorsers of one MSP are interchangeable, the first free one will do
        for i, mspid in enumerate(mspids):
            if i not in used and mspid == self.mspid:
                yield used | {i}
                return

    def __repr__(self):
        return f"SignedBy('{self.mspid}')"


class AnyOf(object):
    """Satisfied by ``count`` not yet counted endorsers of any MSP."""

    def __init__(self, count):
        self.count = count

    def assignments(self, mspids, used):
        free = [i for i in range(len(mspids)) if i not in used]
        seen = set()
        for chosen in itertools.combinations(free, self.count):
            orgs = tuple(sorted(mspids[i] for i in chosen))
            if orgs not in seen:
                seen.add(orgs)
                yield used | frozenset(chosen)

    def __repr__(self):
        return f'AnyOf({self.count})'


class NOutOf(object):

    def __init__(self, n, rules):
        if n < 0 or n > len(rules):
            raise ValueError(f'Invalid policy: {n}-of over {len(rules)} rules')
        self.n = n
        self.rules = list(rules)

    def assignments(self, mspids, used):
        seen = set()
        for result in self._choose(0, self.n, mspids, used):
            if result not in seen:
                seen.add(result)
                yield result

    def _choose(self, start, need, mspids, used):
        if need == 0:
            yield used
            return
        if len(self.rules) - start < need:
            return
        for extended in self.rules[start].assignments(mspids, used):
            yield from self._choose(start + 1, need - 1, mspids, extended)
        yield from self._choose(start + 1, need, mspids, used)

    def __repr__(self):
        return f'NOutOf({self.n}, {self.rules})'


class EndorsementPolicy(object):
    """Rule an endorsement set must satisfy before it can be ordered.

    Each endorser counts towards at most one leaf of the rule tree; every
    assignment of endorsers to leaves is tried before giving up.
    """

    def __init__(self, rule):
        self._rule = rule

    @property
    def rule(self):
        return self._rule

    @classmethod
    def min_count(cls, n):
        if not isinstance(n, int) or n < 1:
            raise ValueError(f'Invalid minimum endorsement count: {n}')
        return cls(AnyOf(n))

    @classmethod
    def per_org(cls, quorums):
        """``{mspid: count}``: every listed organisation must endorse at least
        ``count`` times."""
        if not quorums:
            raise ValueError('Invalid policy, no organisations given')
        rules = []
        for mspid, count in quorums.items():
            if not isinstance(count, int) or count < 1:
                raise ValueError(f'Invalid quorum for {mspid}: {count}')
            rules.append(NOutOf(count, [SignedBy(mspid)] * count))
        return cls(NOutOf(len(rules), rules))

    @classmethod
    def from_config(cls, policy):
        """Build a policy from its configuration form.

        Accepted forms::

            2                                      # any two endorsers
            {'min_endorsements': 2}
            {'per_org': {'Org1MSP': 1, 'Org2MSP': 1}}
            {'identities': [{'role': {'name': 'member', 'mspId': 'Org1MSP'}}, ...],
             'policy': {'1-of': [{'signed-by': 0}, {'signed-by': 1}]}}

        None means one endorsement from anybody.
        """
        if policy is None:
            return cls.min_count(1)
        if isinstance(policy, int) and not isinstance(policy, bool):
            return cls.min_count(policy)
        if not isinstance(policy, dict):
            raise ValueError(f'Invalid policy: {policy!r}')
        if 'min_endorsements' in policy:
            return cls.min_count(policy['min_endorsements'])
        if 'per_org' in policy:
            return cls.per_org(policy['per_org'])

        cls._check_policy(policy)
        mspids = [cls._principal_mspid(identity) for identity in policy['identities']]
        return cls(cls._get_rule(policy['policy'], mspids))

    def is_satisfied_by(self, endorsements):
        """``endorsements``: iterable of objects with an ``endorser_msp``."""
        mspids = [endorsement.endorser_msp for endorsement in endorsements]
        return next(self._rule.assignments(mspids, frozenset()), None) is not None

    @staticmethod
    def _check_policy(policy):
        if not policy.get('identities'):
            raise ValueError('Invalid policy, missing the "identities" property')
        elif not isinstance(policy['identities'], list):
            raise ValueError('Invalid policy, the "identities" property must be an array')

        if not policy.get('policy'):
            raise ValueError('Invalid policy, missing the "policy" property')

    @staticmethod
    def _principal_mspid(identity):
        if 'role' not in identity:
            raise ValueError(f'Invalid identity, only role principals are supported: {identity}')

        roleName = identity['role'].get('name')
        if roleName not in ROLES:
            raise ValueError(f'Invalid role name found: must be one of "peer", "member" or'
                             f' "admin", but found "{roleName}"')

        mspid = identity['role'].get('mspId')
        if not mspid or not isinstance(mspid, str):
            raise ValueError(f'Invalid mspid found: "{mspid}"')
        return mspid

    @classmethod
    def _get_rule(cls, policy, mspids):
        if len(policy) != 1:
            raise ValueError(f'Invalid policy rule: {policy}')
        type = list(policy.keys())[0]
        # signed-by case
        if type == 'signed-by':
            index = policy['signed-by']
            if not isinstance(index, int) or not 0 <= index < len(mspids):
                raise ValueError(f'Invalid signed-by index: {index}')
            return SignedBy(mspids[index])
        # n-of case
        match = re.match(r'^(\d+)-of$', type)
        if not match:
            raise ValueError(f'Invalid policy type: {type}')
        return NOutOf(int(match.group(1)), [cls._get_rule(sub, mspids) for sub in policy[type]])

    def __repr__(self):
        return f'EndorsementPolicy({self._rule})'

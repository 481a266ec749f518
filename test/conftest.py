import shutil

from yurt.health import LeaderPeersAPI


class FakeAPI(LeaderPeersAPI):
    """Answers from a script, one entry per round; the last entry repeats.

    Each entry is (leader, peers), or an exception instance which is raised by
    leader() in that round.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.rounds = 0

    def _answer(self, round_):
        answer = self.script[min(round_, len(self.script) - 1)]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def leader(self):
        self.rounds += 1
        return self._answer(self.rounds - 1)[0]

    def peers(self):
        return list(self._answer(self.rounds - 1)[1])


def have_binaries(*names):
    return all(shutil.which(name) for name in names)

class Match:
    """
    Association between a query keypoint and a candidate keypoint

    Args:
        query_index: Index of the query keypoint in its list
        query_keypoint: Query Keypoint
        candidate_index: Index of the candidate keypoint in its list
        candidate_keypoint: Candidate Keypoint
        distance: Score of the match, lower is better
    """

    def __init__(self, query_index: int, query_keypoint, candidate_index: int,
                 candidate_keypoint, distance: float):
        self.query_index = query_index
        self.query_keypoint = query_keypoint
        self.candidate_index = candidate_index
        self.candidate_keypoint = candidate_keypoint
        self.distance = float(distance)
        self.is_valid = False

    def __lt__(self, other: "Match") -> bool:
        return self.distance < other.distance

    def __repr__(self):
        return (f"Match({self.query_index} -> {self.candidate_index}, "
                f"distance={self.distance:.6g}, valid={self.is_valid})")

    def to_string(self) -> str:
        k1, k2 = self.query_keypoint, self.candidate_keypoint
        return f"{k1.x} {k1.y} {k2.x} {k2.y} {self.distance} {int(self.is_valid)}"

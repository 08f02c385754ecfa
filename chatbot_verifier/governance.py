# chatbot_verifier/governance.py
"""
Governance proposal listing and the canned answers used by the template
generator. End times are relative to the time of the listing call.
"""
import datetime
from typing import Any, Dict, List

_DAY = datetime.timedelta(days=1)

# (id, title, description, status, votes_for, votes_against, end offset in days, proposer)
_PROPOSALS = [
    (123, "Tokenomics Update",
     "Increase staking rewards from 5% to 7% APY and reduce inflation rate by 2%",
     "Active", 67, 33, 3, "0x1234...5678"),
    (124, "Treasury Diversification",
     "Allocate 20% of treasury to DeFi yield farming and invest in blue-chip NFTs",
     "Passed", 89, 11, -1, "0x2345...6789"),
    (125, "Governance Token Distribution",
     "Airdrop 1M tokens to active community members with 12-month linear vesting",
     "Draft", 0, 0, 7, "0x3456...7890"),
    (126, "Partnership with DeFi Protocol",
     "Establish strategic partnership with leading DeFi protocol for cross-chain integration",
     "Active", 45, 55, 1, "0x4567...8901"),
    (127, "Community Rewards Program",
     "Launch comprehensive rewards program for active contributors and early adopters",
     "Completed", 92, 8, -5, "0x5678...9012"),
]


def _iso(ts: datetime.datetime) -> str:
    return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def list_proposals(now: datetime.datetime = None) -> Dict[str, Any]:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    proposals: List[Dict[str, Any]] = []
    for pid, title, desc, status, vf, va, days, proposer in _PROPOSALS:
        proposals.append({
            "id": pid,
            "title": title,
            "description": desc,
            "status": status,
            "votesFor": vf,
            "votesAgainst": va,
            "endTime": _iso(now + days * _DAY),
            "proposer": proposer,
        })
    return {
        "proposals": proposals,
        "total": len(proposals),
        "active": sum(1 for p in proposals if p["status"] == "Active"),
    }


PROPOSAL_SUMMARY = """Based on the recent DAO proposals, here's a summary:

**Proposal #123: Tokenomics Update**
- Increase staking rewards from 5% to 7% APY
- Reduce inflation rate by 2%
- Status: Voting ends in 3 days
- Current votes: 67% FOR, 33% AGAINST

**Proposal #124: Treasury Diversification**
- Allocate 20% of treasury to DeFi yield farming
- Invest in blue-chip NFTs for long-term value
- Status: Passed with 89% approval

**Proposal #125: Governance Token Distribution**
- Airdrop 1M tokens to active community members
- Vesting period: 12 months linear
- Status: Under discussion

These proposals aim to strengthen the DAO's financial position while rewarding community participation."""

TOKENOMICS = """**DAO Tokenomics Overview:**

**Token Supply:** 100M tokens total
- 40% Community rewards & staking
- 25% Treasury reserves
- 20% Team & advisors (4-year vesting)
- 15% Liquidity & partnerships

**Staking Mechanism:**
- Base staking: 5% APY
- Governance staking: +2% APY bonus
- Long-term staking (12+ months): +1% APY bonus

**Governance Power:**
- 1 token = 1 vote
- Minimum 1000 tokens to create proposals
- Quorum: 10% of circulating supply
- Execution threshold: 51% majority

**Economic Model:**
- Deflationary: 2% annual burn rate
- Revenue sharing: 30% of protocol fees distributed to stakers
- Buyback program: 20% of profits used for token buybacks

This tokenomics design incentivizes long-term participation while maintaining decentralized governance."""

VOTING = """**DAO Voting Process:**

**How to Vote:**
1. Connect your wallet with governance tokens
2. Navigate to the proposals section
3. Review proposal details and discussion
4. Cast your vote: FOR, AGAINST, or ABSTAIN
5. Confirm transaction (gas fees apply)

**Voting Requirements:**
- Minimum 100 tokens to vote
- Voting power = token balance
- Votes are weighted by token amount
- Can change vote until deadline

**Proposal Lifecycle:**
1. **Draft** (7 days): Community discussion
2. **Active** (5 days): Formal voting period
3. **Execution** (24 hours): Automatic execution if passed
4. **Completed**: Implementation tracked

**Current Active Proposals:**
- Proposal #123: Tokenomics Update (3 days left)
- Proposal #126: Partnership with DeFi Protocol (1 day left)

**Best Practices:**
- Read full proposal before voting
- Consider long-term DAO health
- Participate in discussions
- Monitor execution after voting"""

TREASURY = """**DAO Treasury Status:**

**Current Holdings:** $2.4M total value
- ETH: 800 ETH ($1.6M)
- USDC: 500,000 ($500K)
- Governance Tokens: 2M tokens ($300K)

**Monthly Revenue:** $45K
- Protocol fees: $30K
- Staking rewards: $10K
- Partnership revenue: $5K

**Expenditure Categories:**
- Development: 40% ($18K/month)
- Marketing: 25% ($11.25K/month)
- Operations: 20% ($9K/month)
- Community rewards: 15% ($6.75K/month)

**Recent Transactions:**
- +$50K: Partnership deal with DeFi protocol
- -$15K: Development team compensation
- -$8K: Marketing campaign launch
- +$12K: Staking rewards distribution

**Treasury Management:**
- Diversified across multiple assets
- Regular audits and transparency reports
- Community-controlled spending limits
- Emergency fund: 20% of total treasury"""

HELP = """I'm your DAO Governance Assistant! I can help you with:

**Available Commands:**
- "Summarize proposals" - Get overview of recent governance proposals
- "Explain tokenomics" - Learn about our token economics
- "How does voting work?" - Understand the voting process
- "Treasury status" - Check DAO financial health

**Quick Stats:**
- Active proposals: 2
- Total token holders: 1,247
- Treasury value: $2.4M
- Voting participation: 34%

Feel free to ask me anything about DAO governance, voting procedures, or current proposals!"""


def answer_for(prompt: str) -> str:
    """Keyword routing; first match wins, HELP otherwise."""
    p = prompt.lower()
    if "summarize" in p and "proposal" in p:
        return PROPOSAL_SUMMARY
    if "tokenomics" in p or "token" in p:
        return TOKENOMICS
    if "voting" in p or "vote" in p:
        return VOTING
    if "treasury" in p or "fund" in p:
        return TREASURY
    return HELP
